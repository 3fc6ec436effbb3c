"""
Sync Orchestrator Module

This module drives repository synchronization: service discovery for
monorepos, overlay scanning and deployment correlation for kubernetes
repositories, and workflow-run actions for both.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from dev_dashboard import config
from dev_dashboard.exceptions import DashboardError, SyncConfigurationError
from dev_dashboard.kubernetes.manifests import extract_image_tag, parse_overlay_path
from dev_dashboard.models import RepositoryType
from dev_dashboard.store import ReconcileResult
from dev_dashboard.sync.correlation import CommitCorrelator
from dev_dashboard.sync.matching import (
    classify_workflow,
    match_service_for_manifest,
    match_workflow_to_resource,
    match_workflow_to_service,
)
from dev_dashboard.vcs.client import ServiceInfo, parse_repository_url

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of syncing one repository."""

    repository_id: int
    repository_name: str = ""
    repository_type: str = ""
    ok: bool = False
    error: str = ""
    services: Optional[ReconcileResult] = None
    deployments: int = 0
    resources: int = 0
    actions: int = 0
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class SyncOrchestrator:
    """
    Periodically reconciles every registered repository with GitHub.
    """

    def __init__(self, store, client=None, interval: int = config.SYNC_INTERVAL_SECONDS):
        self.store = store
        self._client = client
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # Scheduled passes never overlap
        self._pass_lock = threading.Lock()

    @property
    def client(self):
        return self._client

    def reconfigure(self, client) -> None:
        """Use a newly built client from the next repository on."""
        self._client = client
        logger.info(f"Sync orchestrator reconfigured with {client!r}")

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background sync thread: one pass now, then every interval."""
        if self._thread and self._thread.is_alive():
            logger.warning("Sync loop already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-loop", daemon=True)
        self._thread.start()
        logger.info(f"Started background sync loop (interval {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the loop to exit; a pass in flight finishes first."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("Background sync loop stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sync_all()
            except Exception as e:
                logger.error(f"Sync loop error: {e}")
            if self._stop_event.wait(self.interval):
                break

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def sync_all(self) -> List[SyncReport]:
        """Sync every repository in turn; a failing repository does not stop the pass."""
        with self._pass_lock:
            start_time = datetime.now(timezone.utc)
            logger.info(f"Starting sync pass at {start_time}")

            reports = []
            for repository in self.store.list_repositories():
                if self._stop_event.is_set():
                    logger.info("Stop requested, ending sync pass early")
                    break
                report = SyncReport(
                    repository_id=repository.id,
                    repository_name=repository.name,
                    repository_type=getattr(repository.type, "value", str(repository.type)),
                )
                try:
                    self._sync(repository, report)
                except Exception as e:
                    report.error = str(e)
                    logger.error(f"Failed to sync repository {repository.name}: {e}")
                reports.append(report)

            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            failed = sum(1 for r in reports if not r.ok)
            logger.info(
                f"Sync pass completed in {duration:.2f} seconds: "
                f"{len(reports) - failed} ok, {failed} failed"
            )
            return reports

    def sync_repository(self, repository_id: int) -> SyncReport:
        """
        Sync a single repository now.

        Raises the first failure so the caller can show it.
        """
        repository = self.store.get_repository(repository_id)
        report = SyncReport(
            repository_id=repository.id,
            repository_name=repository.name,
            repository_type=getattr(repository.type, "value", str(repository.type)),
        )
        try:
            self._sync(repository, report)
        except DashboardError as e:
            report.error = str(e)
            logger.error(f"Failed to sync repository {repository.name}: {e}")
            raise
        return report

    def rediscover_services(self, repository_id: int) -> ReconcileResult:
        """Re-run service discovery of a monorepo without touching actions."""
        repository = self.store.get_repository(repository_id)
        if repository.type != RepositoryType.MONOREPO:
            raise SyncConfigurationError(f"repository {repository.name} is not a monorepo")
        client = self._require_client()
        owner, repo_name = parse_repository_url(repository.url)
        logger.info(f"Rediscovering services for repository {repository.name} ({repository.url})")
        return self._reconcile_services(client, repository, owner, repo_name)

    def check_repository_access(self, url: str) -> dict:
        """Confirm the configured token can read `url` before it is registered."""
        client = self._require_client()
        owner, repo_name = parse_repository_url(url)
        metadata = client.get_repository(owner, repo_name)
        logger.info(f"Repository {owner}/{repo_name} is accessible")
        return {
            "owner": owner,
            "repo": repo_name,
            "default_branch": metadata.get("default_branch", ""),
        }

    def _require_client(self):
        client = self._client
        if client is None:
            raise SyncConfigurationError("GitHub client not configured - a GitHub token is required")
        return client

    def _sync(self, repository, report: SyncReport) -> SyncReport:
        report.started_at = datetime.now(timezone.utc)
        client = self._require_client()
        owner, repo_name = parse_repository_url(repository.url)

        if repository.type == RepositoryType.MONOREPO:
            report.services = self._reconcile_services(client, repository, owner, repo_name)
        elif repository.type == RepositoryType.KUBERNETES:
            self._sync_kubernetes_repository(client, repository, owner, repo_name, report)
        else:
            raise SyncConfigurationError(f"unknown repository type: {repository.type}")

        try:
            report.actions = self._sync_workflow_actions(client, repository, owner, repo_name)
        except DashboardError as e:
            report.warnings.append(f"workflow runs: {e}")
            logger.error(f"Failed to sync workflow runs for {repository.name}: {e}")

        self.store.touch_last_sync(repository.id)
        report.ok = True
        report.finished_at = datetime.now(timezone.utc)
        logger.info(f"Synced repository {repository.name}")
        return report

    # ------------------------------------------------------------------
    # Monorepos
    # ------------------------------------------------------------------

    def _reconcile_services(self, client, repository, owner: str, repo_name: str) -> ReconcileResult:
        base_path = repository.service_location or config.DEFAULT_SERVICE_PATH
        discovered = client.discover_services(owner, repo_name, base_path)
        services = list(discovered.unwrap_or([]))

        if not services and repository.service_name and repository.service_location:
            services.append(
                ServiceInfo(
                    name=repository.service_name,
                    path=repository.service_location,
                    description=(
                        f"Service {repository.service_name} located at "
                        f"{repository.service_location}"
                    ),
                )
            )
            logger.info(
                f"No services discovered in {repository.name}, using configured service "
                f"{repository.service_name}"
            )

        return self.store.upsert_services_preserving_identity(repository.id, services)

    # ------------------------------------------------------------------
    # Kubernetes repositories
    # ------------------------------------------------------------------

    def _sync_kubernetes_repository(self, client, repository, owner: str, repo_name: str, report: SyncReport):
        logger.info(f"Scanning kustomization files for Kubernetes repo: {repository.name}")
        report.deployments = self._sync_deployments(client, repository, owner, repo_name, report)

        root_path = repository.service_location or ""
        resources = client.discover_kubernetes_resources(owner, repo_name, root_path)
        report.resources = self.store.replace_kubernetes_resources(repository.id, resources)
        logger.info(f"Stored {report.resources} kubernetes resources for {repository.name}")

    def _sync_deployments(self, client, repository, owner: str, repo_name: str, report: SyncReport) -> int:
        manifest_paths = client.find_manifest_files(owner, repo_name, config.MANIFEST_ROOT)
        logger.info(f"Found {len(manifest_paths)} kustomization files in {repository.name}")
        if not manifest_paths:
            return 0

        services = self.store.all_microservices()
        correlator = CommitCorrelator(client, self.store)
        upserted = 0

        for path in manifest_paths:
            coordinates = parse_overlay_path(path)
            if not coordinates.is_found:
                logger.warning(f"Skipping {path}: {coordinates.reason}")
                report.skipped.append(path)
                continue
            target = coordinates.value

            try:
                content = client.get_file_text(owner, repo_name, path)
                if not content.is_found:
                    logger.warning(f"Skipping {path}: {content.reason}")
                    report.skipped.append(path)
                    continue

                tag = extract_image_tag(content.value, target.service)
                if not tag:
                    logger.info(f"No tag found for service {target.service} in {path}")
                    report.skipped.append(path)
                    continue

                service = match_service_for_manifest(target.service, services)
                if service is None:
                    logger.info(f"No matching service found for {target.service}, skipping")
                    report.skipped.append(path)
                    continue

                correlation = correlator.correlate(
                    service,
                    tag,
                    fallback=lambda: client.latest_commit_sha(owner, repo_name, path),
                )

                self.store.upsert_deployment(
                    service_id=service.id,
                    kubernetes_repo_id=repository.id,
                    commit_sha=correlation.commit_sha,
                    environment=target.environment,
                    region=target.region,
                    namespace=target.namespace,
                    tag=tag,
                    path=path,
                )
                upserted += 1
                logger.info(
                    f"Upserted deployment for service {service.name} ({service.id}) in "
                    f"{target.environment}/{target.region}/{target.namespace} with tag {tag}"
                )
            except DashboardError as e:
                logger.error(f"Failed to process {path}: {e}")
                report.skipped.append(path)

        return upserted

    # ------------------------------------------------------------------
    # Workflow runs
    # ------------------------------------------------------------------

    def _sync_workflow_actions(self, client, repository, owner: str, repo_name: str) -> int:
        workflows = client.list_workflows(owner, repo_name)

        services = []
        resources = []
        if repository.type == RepositoryType.MONOREPO:
            services = self.store.list_microservices(repository.id)
        elif repository.type == RepositoryType.KUBERNETES:
            resources = self.store.list_kubernetes_resources(repository.id)

        actions = []
        for workflow in workflows:
            action_type = classify_workflow(workflow.name)
            if action_type is None:
                logger.debug(f"Skipping workflow {workflow.name}: neither build nor deployment")
                continue

            try:
                runs = client.list_workflow_runs(owner, repo_name, workflow.id, config.WORKFLOW_RUNS_LIMIT)
            except DashboardError as e:
                logger.error(f"Failed to get workflow runs for {workflow.name}: {e}")
                continue

            for run in runs:
                action = {
                    "repository_id": repository.id,
                    "service_id": None,
                    "resource_id": None,
                    "type": action_type,
                    "status": run.status,
                    "workflow_run_id": run.id,
                    "commit_sha": run.commit_sha,
                    "branch": run.branch,
                    "started_at": run.started_at or datetime.now(timezone.utc),
                    "completed_at": run.completed_at,
                }
                if services:
                    service = match_workflow_to_service(workflow.name, run.branch, services)
                    if service is not None:
                        action["service_id"] = service.id
                elif resources:
                    resource = match_workflow_to_resource(workflow.name, resources)
                    if resource is not None:
                        action["resource_id"] = resource.id
                actions.append(action)

        stored = self.store.upsert_actions(actions)
        logger.info(f"Upserted {stored} actions for {repository.name}")
        return stored
