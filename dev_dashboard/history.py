"""
Deployment History Module

Read-side views of a monorepo service: its commit log, the pull requests that
touched it, and which commit is live on each deployment target.
"""
import logging
from typing import Any, Dict, List

from dev_dashboard import config
from dev_dashboard.exceptions import SyncConfigurationError
from dev_dashboard.models import RepositoryType
from dev_dashboard.vcs.client import CommitInfo, PullRequestInfo, parse_repository_url

logger = logging.getLogger(__name__)

DEPLOYED = "deployed"
NOT_DEPLOYED = "not-deployed"


class DeploymentHistory:
    def __init__(self, store, client_provider):
        """
        Args:
            store: RecordStore
            client_provider: callable returning the current GitHub client (or None)
        """
        self.store = store
        self._client_provider = client_provider

    def _locate(self, service_id: int):
        service = self.store.get_microservice(service_id)
        repository = self.store.get_repository(service.repository_id)
        if repository.type != RepositoryType.MONOREPO:
            raise SyncConfigurationError(
                f"service {service.name} does not belong to a monorepo"
            )
        client = self._client_provider()
        if client is None:
            raise SyncConfigurationError("GitHub client not configured - a GitHub token is required")
        owner, repo_name = parse_repository_url(repository.url)
        return client, service, owner, repo_name

    def service_commits(self, service_id: int, limit: int = config.SERVICE_COMMITS_LIMIT) -> List[CommitInfo]:
        client, service, owner, repo_name = self._locate(service_id)
        commits = client.list_commits(owner, repo_name, path=service.path, per_page=limit)
        logger.info(f"Fetched {len(commits)} commits for service {service.name}")
        return commits

    def commit_deployment_statuses(self, service_id: int) -> List[Dict[str, Any]]:
        """
        Cross the service's commit log with its current deployments.

        Every commit gets one entry per known deployment target. Targets
        are ordered by environment, region and namespace.
        """
        deployments = self.store.list_deployments_for_service(service_id)
        commits = self.service_commits(service_id)

        rows = []
        for commit in commits:
            targets = []
            for deployment in deployments:
                deployed = bool(deployment.commit_sha) and deployment.commit_sha == commit.sha
                targets.append(
                    {
                        "environment": deployment.environment,
                        "region": deployment.region,
                        "namespace": deployment.namespace or "",
                        "status": DEPLOYED if deployed else NOT_DEPLOYED,
                        "tag": deployment.tag if deployed else "",
                    }
                )
            rows.append(
                {
                    "sha": commit.sha,
                    "message": commit.message,
                    "author": commit.author,
                    "date": commit.date,
                    "deployments": targets,
                }
            )
        return rows

    def service_pull_requests(self, service_id: int, limit: int = 50) -> List[PullRequestInfo]:
        """Pull requests with at least one changed file under the service path."""
        client, service, owner, repo_name = self._locate(service_id)
        prefix = service.path.strip("/") + "/"

        matching = []
        for pull_request in client.list_pull_requests(owner, repo_name, per_page=limit):
            files = client.list_pull_request_files(owner, repo_name, pull_request.number)
            if any(name.startswith(prefix) for name in files):
                matching.append(pull_request)
        logger.info(f"Found {len(matching)} pull requests touching service {service.name}")
        return matching
