"""
Commit Correlation Module

Maps a deployed image tag back to the monorepo commit that produced it.
This is a best-effort heuristic: it never raises. When nothing matches it
falls back to the kubernetes repository's own commit, or to "" when even
that lookup fails.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from dev_dashboard import config
from dev_dashboard.exceptions import DashboardError
from dev_dashboard.models import RepositoryType
from dev_dashboard.vcs.client import CommitInfo, parse_repository_url

logger = logging.getLogger(__name__)

COMMIT_SHA_PATTERN = re.compile(r"^[0-9a-fA-F]{40}$")
RELEASE_PREFIX = "release-"


class CorrelationStrategy(str, Enum):
    DIRECT_SHA = "direct_sha"
    COMMIT_MESSAGE = "commit_message"
    RELEASE_VERSION = "release_version"
    GIT_TAG = "git_tag"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Correlation:
    commit_sha: str
    strategy: CorrelationStrategy

    @property
    def correlated(self) -> bool:
        return self.strategy is not CorrelationStrategy.FALLBACK


def is_commit_sha(tag: str) -> bool:
    return bool(tag) and bool(COMMIT_SHA_PATTERN.match(tag))


def release_version(tag: str) -> Optional[str]:
    """"release-2.4.0" -> "2.4.0"; None for tags not following the convention."""
    if tag and tag.startswith(RELEASE_PREFIX) and len(tag) > len(RELEASE_PREFIX):
        return tag[len(RELEASE_PREFIX):]
    return None


def find_commit_by_message(commits: List[CommitInfo], needle: str) -> Optional[CommitInfo]:
    needle = needle.lower()
    for commit in commits:
        if commit.sha and needle in commit.message.lower():
            return commit
    return None


class CommitCorrelator:
    """
    Resolves deployment tags against the monorepo of the deployed service.
    """

    def __init__(self, client, store, commit_limit: int = config.CORRELATION_COMMIT_LIMIT):
        self.client = client
        self.store = store
        self.commit_limit = commit_limit

    def correlate(
        self, service, tag: str, fallback: Optional[Callable[[], str]] = None
    ) -> Correlation:
        """
        Try, in order: the tag is a SHA, a commit message mentions the tag, a
        commit message mentions the release version, a git tag has the same
        name. Falls back to the SHA returned by `fallback`, which is only
        called when every other strategy missed.
        """
        if is_commit_sha(tag):
            logger.info(f"Using tag as commit SHA for service {service.name}: {tag}")
            return Correlation(tag, CorrelationStrategy.DIRECT_SHA)

        location = self._monorepo_location(service)
        if location is not None and tag:
            owner, repo_name = location
            correlation = self._correlate_remote(service, owner, repo_name, tag)
            if correlation is not None:
                return correlation

        fallback_sha = self._fallback_sha(fallback)
        logger.warning(
            f"No commit correlation found for tag {tag} in service {service.name}, "
            f"using kubernetes repository commit {fallback_sha[:7] or '-'}"
        )
        return Correlation(fallback_sha, CorrelationStrategy.FALLBACK)

    def _fallback_sha(self, fallback: Optional[Callable[[], str]]) -> str:
        if fallback is None:
            return ""
        try:
            return fallback() or ""
        except DashboardError as e:
            logger.error(f"Failed to get fallback commit: {e}")
            return ""

    def _monorepo_location(self, service):
        try:
            repository = self.store.get_repository(service.repository_id)
        except DashboardError as e:
            logger.error(f"Failed to load repository of service {service.name}: {e}")
            return None
        if repository.type != RepositoryType.MONOREPO:
            return None
        try:
            return parse_repository_url(repository.url)
        except DashboardError as e:
            logger.error(f"Failed to parse repository URL {repository.url}: {e}")
            return None

    def _correlate_remote(self, service, owner: str, repo_name: str, tag: str) -> Optional[Correlation]:
        try:
            commits = self.client.list_commits(
                owner, repo_name, path=service.path, per_page=self.commit_limit
            )
        except DashboardError as e:
            logger.error(f"Failed to get commits for service {service.name}: {e}")
            commits = []

        match = find_commit_by_message(commits, tag)
        if match:
            logger.info(f"Found matching commit {match.sha[:7]} for tag {tag}")
            return Correlation(match.sha, CorrelationStrategy.COMMIT_MESSAGE)

        version = release_version(tag)
        if version:
            match = find_commit_by_message(commits, version)
            if match:
                logger.info(f"Found version matching commit {match.sha[:7]} for tag {tag}")
                return Correlation(match.sha, CorrelationStrategy.RELEASE_VERSION)

        try:
            tags = self.client.list_tags(owner, repo_name)
        except DashboardError as e:
            logger.error(f"Failed to list tags of {owner}/{repo_name}: {e}")
            tags = []
        for git_tag in tags:
            if git_tag.commit_sha and git_tag.name.lower() == tag.lower():
                logger.info(f"Found exact git tag match for {tag}: {git_tag.commit_sha}")
                return Correlation(git_tag.commit_sha, CorrelationStrategy.GIT_TAG)

        return None
