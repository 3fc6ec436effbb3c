"""Exceptions raised by the sync subsystem and its collaborators."""

from typing import Optional


class DashboardError(Exception):
    """Base exception for dashboard failures."""


class SyncConfigurationError(DashboardError):
    """Raised when required configuration (token, client) is missing."""


class InvalidRepositoryURL(SyncConfigurationError):
    """Raised when a repository URL is not an HTTPS GitHub URL."""


class RepositoryNotFound(DashboardError):
    """Raised when a repository id does not exist."""


class RecordNotFound(DashboardError):
    """Raised when a microservice, project or task id does not exist."""


class GitHubAPIError(DashboardError):
    """Raised for non-2xx responses and transport failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class GitHubRateLimitError(GitHubAPIError):
    """Raised when GitHub rejects a request because the rate limit is exhausted."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: str = "",
        reset_at: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code, url=url)
        self.reset_at = reset_at


class ReconciliationError(DashboardError):
    """Raised when a batch write fails and its transaction is rolled back."""


class JiraError(DashboardError):
    """Raised for ticket tracker failures."""


class JiraAuthError(JiraError):
    """Raised on 401 responses; other API versions are not tried."""


class DuplicateRecord(DashboardError):
    """Raised when a record violates a uniqueness constraint."""
