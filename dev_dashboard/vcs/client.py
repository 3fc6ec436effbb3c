"""
GitHub Client Module

This module wraps the GitHub REST API calls used by the dashboard:
repository contents, commits, tags, pull requests, workflows and workflow runs.

The client is an immutable value. Changing the token or the enterprise URL
means building a new client. Errors are raised as they come back from GitHub;
retrying is left to the caller.
"""
import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import requests

from dev_dashboard import config
from dev_dashboard.exceptions import GitHubAPIError, GitHubRateLimitError, InvalidRepositoryURL
from dev_dashboard.kubernetes.manifests import ResourceInfo, is_manifest_file, parse_resource_manifest
from dev_dashboard.outcome import Outcome

logger = logging.getLogger(__name__)

PUBLIC_API_URL = "https://api.github.com"
# Listing failures with these statuses mean "cannot look here", not "GitHub is down"
UNLISTABLE_STATUSES = (401, 403, 404)


@dataclass(frozen=True)
class ServiceInfo:
    name: str
    path: str
    description: str = ""


@dataclass(frozen=True)
class Workflow:
    id: int
    name: str
    path: str = ""
    state: str = ""


@dataclass(frozen=True)
class WorkflowRun:
    id: int
    status: str
    commit_sha: str
    branch: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    message: str
    author: str
    date: Optional[datetime]


@dataclass(frozen=True)
class TagInfo:
    name: str
    commit_sha: str


@dataclass(frozen=True)
class PullRequestInfo:
    number: int
    title: str
    status: str
    author: str
    branch: str
    created_at: Optional[datetime]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub's ISO-8601 timestamps ("2024-01-15T10:00:00Z")."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable timestamp from GitHub: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_repository_url(url: str) -> Tuple[str, str]:
    """
    Extract (owner, repo) from an HTTPS repository URL.

    Accepts https://github.com/owner/repo, an enterprise host, a trailing
    slash and a .git suffix. Any other scheme is rejected.
    """
    if not url or not url.strip():
        raise InvalidRepositoryURL("repository URL is empty")

    parsed = urlparse(url.strip())
    if parsed.scheme != "https" or not parsed.netloc:
        raise InvalidRepositoryURL(f"only HTTPS repository URLs are supported: {url}")

    path = parsed.path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [p for p in path.split("/") if p]
    if len(parts) != 2:
        raise InvalidRepositoryURL(f"invalid repository path in URL: {url}")
    return parts[0], parts[1]


def normalize_api_base_url(base_url: Optional[str]) -> str:
    """Return the REST root for github.com or an enterprise host (…/api/v3)."""
    if not base_url or not base_url.strip():
        return PUBLIC_API_URL
    base_url = base_url.strip().rstrip("/")
    if base_url == PUBLIC_API_URL:
        return base_url
    if not base_url.endswith("/api/v3"):
        base_url = f"{base_url}/api/v3"
    return base_url


def _normalize_dir(path: str, default: str = "") -> str:
    path = (path or "").strip()
    while path.startswith("./"):
        path = path[2:]
    path = path.strip("/")
    return path or default


class GitHubClient:
    """
    Authenticated GitHub REST client.
    """

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self._token = token or ""
        self._base_url = normalize_api_base_url(base_url)
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "Dev-Dashboard",
        }
        if self._token:
            self._headers["Authorization"] = f"Bearer {self._token}"
        else:
            logger.warning(
                "No GitHub token provided. API rate limits will be restricted "
                "and private repositories will not be visible."
            )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_enterprise(self) -> bool:
        return self._base_url != PUBLIC_API_URL

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def __repr__(self):
        return f"<GitHubClient(base_url={self._base_url}, token={'set' if self._token else 'unset'})>"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(
                url, headers=self._headers, params=params, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise GitHubAPIError(f"Request to {url} failed: {e}", url=url) from e
        return response

    def _raise_for_status(self, response: requests.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        remaining = response.headers.get("X-RateLimit-Remaining")
        if status == 429 or (status == 403 and remaining == "0"):
            reset = response.headers.get("X-RateLimit-Reset")
            raise GitHubRateLimitError(
                f"GitHub API rate limit exceeded for {url}",
                status_code=status,
                url=url,
                reset_at=int(reset) if reset and reset.isdigit() else None,
            )
        raise GitHubAPIError(
            f"GitHub API error {status} for {url}: {response.text[:200]}",
            status_code=status,
            url=url,
        )

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._get(path, params)
        self._raise_for_status(response, path)
        return response.json()

    def _get_json_optional(self, path: str, params: Optional[Dict[str, Any]] = None) -> Outcome:
        """Like _get_json, but a 404 becomes a not-applicable outcome."""
        response = self._get(path, params)
        if response.status_code == 404:
            return Outcome.not_applicable(f"{path} not found")
        self._raise_for_status(response, path)
        return Outcome.found(response.json())

    @staticmethod
    def _repo_path(owner: str, repo: str) -> str:
        return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

    # ------------------------------------------------------------------
    # Repository and contents
    # ------------------------------------------------------------------

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return self._get_json(self._repo_path(owner, repo))

    def get_contents(self, owner: str, repo: str, path: str) -> Outcome:
        """Directory listing (list) or file entry (dict); 404 is not applicable."""
        path = _normalize_dir(path)
        return self._get_json_optional(
            f"{self._repo_path(owner, repo)}/contents/{quote(path, safe='/')}"
        )

    def get_file_text(self, owner: str, repo: str, path: str) -> Outcome:
        """Decoded text of a file; 404 or a directory is not applicable."""
        listing = self.get_contents(owner, repo, path)
        if not listing.is_found:
            return listing
        entry = listing.value
        if not isinstance(entry, dict) or entry.get("type", "file") != "file":
            return Outcome.not_applicable(f"{path} is not a file")

        content = entry.get("content") or ""
        if entry.get("encoding") == "base64":
            try:
                content = base64.b64decode(content).decode("utf-8", errors="replace")
            except ValueError as e:
                return Outcome.failed(GitHubAPIError(f"Undecodable content for {path}: {e}"))
        return Outcome.found(content)

    def _list_directory(self, owner: str, repo: str, path: str) -> List[Dict[str, Any]]:
        """Entries of a directory, or [] when it cannot be listed."""
        try:
            listing = self.get_contents(owner, repo, path)
        except GitHubAPIError as e:
            if e.status_code in UNLISTABLE_STATUSES and not isinstance(e, GitHubRateLimitError):
                logger.debug(f"Skipping unlistable directory {path}: {e}")
                return []
            raise
        if not listing.is_found or not isinstance(listing.value, list):
            return []
        return listing.value

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_services(
        self, owner: str, repo: str, base_path: str = config.DEFAULT_SERVICE_PATH
    ) -> Outcome:
        """
        List the service directories directly under `base_path`.

        Returns a not-applicable outcome when the directory does not exist,
        so that callers can tell "no services yet" from a failed call.
        """
        base_path = _normalize_dir(base_path, config.DEFAULT_SERVICE_PATH)
        logger.info(f"Discovering services in {owner}/{repo} at path: {base_path}")

        listing = self.get_contents(owner, repo, base_path)
        if not listing.is_found:
            logger.info(f"Directory {base_path} does not exist in {owner}/{repo}")
            return listing
        if not isinstance(listing.value, list):
            return Outcome.not_applicable(f"{base_path} is not a directory")

        services = []
        for entry in listing.value:
            if entry.get("type") != "dir":
                continue
            name = entry.get("name") or ""
            service_path = f"{base_path}/{name}"
            services.append(
                ServiceInfo(
                    name=name,
                    path=service_path,
                    description=self._service_description(owner, repo, service_path),
                )
            )

        logger.info(f"Total services discovered in {owner}/{repo}: {len(services)}")
        return Outcome.found(services)

    def _service_description(self, owner: str, repo: str, service_path: str) -> str:
        """One-line description from README.md, falling back to package.json."""
        try:
            readme = self.get_file_text(owner, repo, f"{service_path}/README.md")
            if readme.is_found:
                for line in readme.value.splitlines():
                    line = line.strip()
                    if line and not line.startswith("#"):
                        return line

            package_json = self.get_file_text(owner, repo, f"{service_path}/package.json")
            if package_json.is_found:
                try:
                    description = json.loads(package_json.value).get("description")
                except (ValueError, AttributeError):
                    description = None
                if isinstance(description, str):
                    return description.strip()
        except GitHubAPIError as e:
            logger.warning(f"Could not read description for {service_path}: {e}")
        return ""

    def find_manifest_files(
        self, owner: str, repo: str, root_path: str = config.MANIFEST_ROOT
    ) -> List[str]:
        """
        Depth-first search for files named exactly kustomization.yaml.

        Directories that cannot be listed are skipped.
        """
        found: List[str] = []
        self._collect_manifest_files(owner, repo, _normalize_dir(root_path), found)
        return found

    def _collect_manifest_files(self, owner: str, repo: str, path: str, found: List[str]) -> None:
        for entry in self._list_directory(owner, repo, path):
            entry_type = entry.get("type")
            entry_path = entry.get("path") or f"{path}/{entry.get('name', '')}"
            if entry_type == "dir":
                self._collect_manifest_files(owner, repo, entry_path, found)
            elif entry_type == "file" and entry.get("name") == config.MANIFEST_FILENAME:
                found.append(entry_path)

    def discover_kubernetes_resources(
        self, owner: str, repo: str, root_path: str = ""
    ) -> List[ResourceInfo]:
        """
        Parse every YAML manifest under `root_path`, or under the usual
        Kubernetes directories when no root path is configured.
        """
        root_path = _normalize_dir(root_path)
        roots = [root_path] if root_path and root_path != "." else config.KUBERNETES_DEFAULT_DIRS
        resources: List[ResourceInfo] = []
        for root in roots:
            self._collect_resources(owner, repo, root, resources)
        return resources

    def _collect_resources(self, owner: str, repo: str, path: str, resources: List[ResourceInfo]) -> None:
        for entry in self._list_directory(owner, repo, path):
            entry_type = entry.get("type")
            entry_path = entry.get("path") or f"{path}/{entry.get('name', '')}"
            if entry_type == "dir":
                self._collect_resources(owner, repo, entry_path, resources)
            elif entry_type == "file" and is_manifest_file(entry.get("name") or ""):
                text = self.get_file_text(owner, repo, entry_path)
                if text.is_found:
                    resources.extend(parse_resource_manifest(text.value, entry_path))
                elif text.is_failed:
                    logger.warning(f"Skipping manifest {entry_path}: {text.reason}")

    # ------------------------------------------------------------------
    # Commits, tags, pull requests
    # ------------------------------------------------------------------

    def list_commits(
        self, owner: str, repo: str, path: Optional[str] = None, per_page: int = 50
    ) -> List[CommitInfo]:
        params: Dict[str, Any] = {"per_page": per_page}
        if path:
            params["path"] = path
        data = self._get_json(f"{self._repo_path(owner, repo)}/commits", params) or []
        commits = []
        for item in data:
            commit = item.get("commit") or {}
            author = commit.get("author") or {}
            commits.append(
                CommitInfo(
                    sha=item.get("sha") or "",
                    message=commit.get("message") or "",
                    author=author.get("name") or "Unknown",
                    date=parse_timestamp(author.get("date")),
                )
            )
        return commits

    def latest_commit_sha(self, owner: str, repo: str, path: str) -> str:
        """SHA of the most recent commit touching `path`, or "" when there is none."""
        commits = self.list_commits(owner, repo, path=path, per_page=1)
        return commits[0].sha if commits else ""

    def list_tags(self, owner: str, repo: str, per_page: int = 100) -> List[TagInfo]:
        data = self._get_json(f"{self._repo_path(owner, repo)}/tags", {"per_page": per_page}) or []
        return [
            TagInfo(name=item.get("name") or "", commit_sha=(item.get("commit") or {}).get("sha") or "")
            for item in data
        ]

    def list_pull_requests(
        self, owner: str, repo: str, state: str = "all", per_page: int = 50
    ) -> List[PullRequestInfo]:
        data = self._get_json(
            f"{self._repo_path(owner, repo)}/pulls", {"state": state, "per_page": per_page}
        ) or []
        pull_requests = []
        for item in data:
            status = item.get("state") or "open"
            if item.get("merged_at"):
                status = "merged"
            pull_requests.append(
                PullRequestInfo(
                    number=item.get("number"),
                    title=item.get("title") or "",
                    status=status,
                    author=(item.get("user") or {}).get("login") or "",
                    branch=(item.get("head") or {}).get("ref") or "",
                    created_at=parse_timestamp(item.get("created_at")),
                )
            )
        return pull_requests

    def list_pull_request_files(self, owner: str, repo: str, number: int) -> List[str]:
        data = self._get_json(
            f"{self._repo_path(owner, repo)}/pulls/{number}/files", {"per_page": 100}
        ) or []
        return [item.get("filename") or "" for item in data]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def list_workflows(self, owner: str, repo: str) -> List[Workflow]:
        data = self._get_json(
            f"{self._repo_path(owner, repo)}/actions/workflows", {"per_page": 100}
        ) or {}
        return [
            Workflow(
                id=item.get("id"),
                name=item.get("name") or "",
                path=item.get("path") or "",
                state=item.get("state") or "",
            )
            for item in data.get("workflows", [])
        ]

    def list_workflow_runs(
        self, owner: str, repo: str, workflow_id: int, limit: int = config.WORKFLOW_RUNS_LIMIT
    ) -> List[WorkflowRun]:
        """Most recent runs of one workflow, newest first."""
        data = self._get_json(
            f"{self._repo_path(owner, repo)}/actions/workflows/{workflow_id}/runs",
            {"per_page": limit},
        ) or {}
        runs = []
        for item in data.get("workflow_runs", [])[:limit]:
            runs.append(
                WorkflowRun(
                    id=item.get("id"),
                    # conclusion (success, failure, ...) once the run has finished
                    status=item.get("conclusion") or item.get("status") or "unknown",
                    commit_sha=item.get("head_sha") or "",
                    branch=item.get("head_branch") or "",
                    started_at=parse_timestamp(item.get("run_started_at") or item.get("created_at")),
                    completed_at=parse_timestamp(item.get("updated_at")),
                )
            )
        return runs
