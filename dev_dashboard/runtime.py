"""
Runtime Module

Holds the long-lived collaborators of the application and rebuilds the
immutable GitHub and JIRA clients when their settings change.
"""
import logging
import threading
from typing import Optional

from dev_dashboard import config
from dev_dashboard.history import DeploymentHistory
from dev_dashboard.jira import JiraClient
from dev_dashboard.planner import Planner
from dev_dashboard.store import RecordStore
from dev_dashboard.sync.orchestrator import SyncOrchestrator
from dev_dashboard.vcs.client import GitHubClient

logger = logging.getLogger(__name__)

GITHUB_PREFIX = "github_"
JIRA_PREFIX = "jira_"


class Runtime:
    def __init__(self, engine, interval: int = config.SYNC_INTERVAL_SECONDS):
        self.engine = engine
        self.store = RecordStore(engine)
        self._lock = threading.Lock()
        self.orchestrator = SyncOrchestrator(self.store, self.build_github_client(), interval)
        self.planner = Planner(engine, self.build_jira_client())
        self.history = DeploymentHistory(self.store, lambda: self.orchestrator.client)

    @property
    def jira_client(self) -> Optional[JiraClient]:
        return self.planner.jira_client

    def _setting(self, key: str, default: str) -> str:
        value = self.store.get_config(key)
        return value if value else default

    def build_github_client(self) -> Optional[GitHubClient]:
        """A client from stored settings, then the environment; None without a token."""
        token = self._setting(config.CONFIG_GITHUB_TOKEN, config.GITHUB_TOKEN)
        if not token:
            logger.warning("No GitHub token configured, repository sync is disabled")
            return None
        base_url = self._setting(config.CONFIG_GITHUB_ENTERPRISE_URL, config.GITHUB_API_URL)
        return GitHubClient(token, base_url=base_url)

    def build_jira_client(self) -> Optional[JiraClient]:
        url = self._setting(config.CONFIG_JIRA_URL, config.JIRA_URL)
        token = self._setting(config.CONFIG_JIRA_TOKEN, config.JIRA_TOKEN)
        if not url or not token:
            logger.info("JIRA not configured")
            return None
        return JiraClient(
            url,
            token,
            username=self._setting(config.CONFIG_JIRA_USERNAME, config.JIRA_USERNAME),
            auth_method=self._setting(config.CONFIG_JIRA_AUTH_METHOD, config.JIRA_AUTH_METHOD),
        )

    def set_config(self, key: str, value: str) -> None:
        """Store a setting and rebuild the client it belongs to."""
        with self._lock:
            self.store.set_config(key, value)
            self._rebuild_for(key)

    def delete_config(self, key: str) -> None:
        with self._lock:
            self.store.delete_config(key)
            self._rebuild_for(key)

    def _rebuild_for(self, key: str) -> None:
        if key.startswith(GITHUB_PREFIX):
            self.orchestrator.reconfigure(self.build_github_client())
        elif key.startswith(JIRA_PREFIX):
            self.planner.jira_client = self.build_jira_client()
            logger.info(f"JIRA client rebuilt after {key} changed")

    def start(self) -> None:
        self.orchestrator.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.orchestrator.stop(timeout)
