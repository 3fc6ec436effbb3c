"""
Jira Client Module

Minimal JIRA REST client used to enrich planner tasks with issue titles.
Enterprise servers usually speak API v2 and Cloud speaks v3, so both are
tried in that order.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import requests

from dev_dashboard import config
from dev_dashboard.exceptions import JiraAuthError, JiraError

logger = logging.getLogger(__name__)

API_VERSIONS = ("2", "3")
AUTH_BASIC = "basic"
AUTH_BEARER = "bearer"
AUTH_TOKEN = "token"

_API_SUFFIX = re.compile(r"/rest/api(/\d+)?$")


@dataclass(frozen=True)
class JiraIssue:
    key: str
    summary: str
    status: str = ""
    issue_type: str = ""
    priority: str = ""


def normalize_base_url(base_url: str) -> str:
    """Strip trailing slashes and any /rest/api[/N] suffix."""
    base_url = (base_url or "").strip().rstrip("/")
    return _API_SUFFIX.sub("", base_url)


def detect_auth_method(username: str, token: str, auth_method: str = "") -> str:
    if auth_method:
        return auth_method
    if username and token:
        return AUTH_BASIC
    if token:
        return AUTH_BEARER
    return AUTH_BASIC


class JiraClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        username: str = "",
        auth_method: str = "",
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = normalize_base_url(base_url)
        self.username = username or ""
        self.token = token or ""
        self.auth_method = detect_auth_method(self.username, self.token, auth_method)
        self.timeout = timeout
        self._session = session or requests.Session()

    def __repr__(self):
        return f"JiraClient(base_url={self.base_url!r}, auth_method={self.auth_method!r})"

    @property
    def configured(self) -> bool:
        return bool(self.base_url) and bool(self.token or self.username)

    def _api_url(self, version: str) -> str:
        return f"{self.base_url}/rest/api/{version}"

    def _auth(self):
        if self.auth_method == AUTH_BASIC and self.username and self.token:
            return (self.username, self.token)
        return None

    def _headers(self):
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.auth_method == AUTH_BEARER and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        elif self.auth_method == AUTH_TOKEN and self.token:
            headers["X-Atlassian-Token"] = self.token
        return headers

    def _get(self, url: str) -> requests.Response:
        try:
            return self._session.get(
                url, headers=self._headers(), auth=self._auth(), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise JiraError(f"failed to make request to {url}: {e}") from e

    def _check(self, response: requests.Response, what: str) -> None:
        if response.status_code == 401:
            raise JiraAuthError("unauthorized (401) - check your JIRA credentials and URL")
        if response.status_code == 403:
            raise JiraError(f"forbidden (403) - check your JIRA permissions for {what}")
        if response.status_code == 404:
            raise JiraError(f"{what} not found")
        if response.status_code != 200:
            raise JiraError(f"JIRA API error {response.status_code}: {response.text[:200]}")

    def _require_credentials(self) -> None:
        if not self.configured:
            raise JiraError("JIRA authentication not configured")

    def get_issue(self, issue_key: str) -> JiraIssue:
        """Fetch an issue, trying API v2 and then v3. A 401 stops immediately."""
        self._require_credentials()
        last_error = None
        for version in API_VERSIONS:
            url = f"{self._api_url(version)}/issue/{issue_key}"
            try:
                response = self._get(url)
                self._check(response, f"issue {issue_key}")
                data = response.json()
            except JiraAuthError:
                raise
            except (JiraError, ValueError) as e:
                logger.debug(f"JIRA API v{version} failed for {issue_key}: {e}")
                last_error = e
                continue

            fields = data.get("fields") or {}
            return JiraIssue(
                key=data.get("key") or issue_key,
                summary=fields.get("summary") or "",
                status=(fields.get("status") or {}).get("name") or "",
                issue_type=(fields.get("issuetype") or {}).get("name") or "",
                priority=(fields.get("priority") or {}).get("name") or "",
            )

        raise JiraError(
            f"failed to fetch issue {issue_key} with both API v2 and v3: {last_error}"
        )

    def test_connection(self) -> None:
        """Raise JiraError unless /myself answers on API v2 or v3."""
        self._require_credentials()
        last_error = None
        for version in API_VERSIONS:
            try:
                self._check(self._get(f"{self._api_url(version)}/myself"), "current user")
                logger.info(f"JIRA connection ok (API v{version})")
                return
            except JiraAuthError:
                raise
            except JiraError as e:
                last_error = e
        raise JiraError(f"failed to connect to JIRA with both API v2 and v3: {last_error}")
