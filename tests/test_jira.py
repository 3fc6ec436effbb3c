from unittest.mock import MagicMock

import pytest
import requests

from dev_dashboard.exceptions import JiraAuthError, JiraError
from dev_dashboard.jira import JiraClient, detect_auth_method, normalize_base_url


def response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload or {}
    resp.text = str(payload)
    return resp


def client_with(*responses, **kwargs):
    session = MagicMock()
    session.get.side_effect = list(responses)
    client = JiraClient("https://jira.example.com/", kwargs.pop("token", "tok"), session=session, **kwargs)
    return client, session


class TestConfiguration:
    @pytest.mark.parametrize(
        "url",
        [
            "https://jira.example.com",
            "https://jira.example.com/",
            "https://jira.example.com/rest/api",
            "https://jira.example.com/rest/api/2",
            "https://jira.example.com/rest/api/3/",
        ],
    )
    def test_base_url_is_normalized(self, url):
        assert normalize_base_url(url) == "https://jira.example.com"

    def test_auth_detection(self):
        assert detect_auth_method("me", "tok") == "basic"
        assert detect_auth_method("", "tok") == "bearer"
        assert detect_auth_method("", "") == "basic"
        assert detect_auth_method("me", "tok", "token") == "token"

    def test_headers_per_method(self):
        bearer, session = client_with(response(200, {"key": "A-1", "fields": {}}))
        bearer.get_issue("A-1")
        kwargs = session.get.call_args[1]
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["auth"] is None
        assert kwargs["timeout"] == 30

        basic, session = client_with(response(200, {"key": "A-1", "fields": {}}), username="me")
        basic.get_issue("A-1")
        assert session.get.call_args[1]["auth"] == ("me", "tok")

        token, session = client_with(response(200, {"key": "A-1", "fields": {}}), auth_method="token")
        token.get_issue("A-1")
        assert session.get.call_args[1]["headers"]["X-Atlassian-Token"] == "tok"


class TestGetIssue:
    def test_v2_first(self):
        client, session = client_with(
            response(200, {"key": "OPS-1", "fields": {"summary": "Fix login", "status": {"name": "Open"}}})
        )
        issue = client.get_issue("OPS-1")
        assert issue.summary == "Fix login"
        assert issue.status == "Open"
        assert session.get.call_args[0][0] == "https://jira.example.com/rest/api/2/issue/OPS-1"

    def test_falls_back_to_v3(self):
        client, session = client_with(
            response(404), response(200, {"key": "OPS-1", "fields": {"summary": "Cloud"}})
        )
        assert client.get_issue("OPS-1").summary == "Cloud"
        assert session.get.call_args[0][0] == "https://jira.example.com/rest/api/3/issue/OPS-1"

    def test_unauthorized_stops(self):
        client, session = client_with(response(401), response(200, {"fields": {}}))
        with pytest.raises(JiraAuthError):
            client.get_issue("OPS-1")
        assert session.get.call_count == 1

    def test_both_versions_fail(self):
        client, _ = client_with(response(500), response(404))
        with pytest.raises(JiraError, match="both API v2 and v3"):
            client.get_issue("OPS-1")

    def test_transport_failure(self):
        client, session = client_with(requests.ConnectionError("down"), requests.ConnectionError("down"))
        with pytest.raises(JiraError):
            client.get_issue("OPS-1")

    def test_requires_credentials(self):
        client = JiraClient("https://jira.example.com", "", session=MagicMock())
        with pytest.raises(JiraError, match="not configured"):
            client.get_issue("OPS-1")

    def test_requires_base_url(self):
        client = JiraClient("", "tok", session=MagicMock())
        with pytest.raises(JiraError, match="not configured"):
            client.test_connection()


class TestConnection:
    def test_ok(self):
        client, session = client_with(response(200, {"name": "me"}))
        client.test_connection()
        assert session.get.call_args[0][0] == "https://jira.example.com/rest/api/2/myself"

    def test_unauthorized(self):
        client, _ = client_with(response(401))
        with pytest.raises(JiraAuthError):
            client.test_connection()
