import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dev_dashboard.api import router
from dev_dashboard.outcome import Outcome
from dev_dashboard.runtime import Runtime
from dev_dashboard.vcs.client import ServiceInfo


@pytest.fixture
def runtime(db_engine, github, monkeypatch):
    monkeypatch.setattr(Runtime, "build_github_client", lambda self: github)
    monkeypatch.setattr(Runtime, "build_jira_client", lambda self: None)
    return Runtime(db_engine)


@pytest.fixture
def client(runtime):
    app = FastAPI()
    app.state.runtime = runtime
    app.include_router(router, prefix="/api")
    return TestClient(app)


def create_monorepo(client, url="https://github.com/acme/platform"):
    resp = client.post(
        "/api/repositories", json={"name": "platform", "url": url, "type": "monorepo"}
    )
    assert resp.status_code == 201
    return resp.json()


class TestRepositoriesApi:
    def test_crud(self, client):
        created = create_monorepo(client)
        assert created["type"] == "monorepo"

        assert [r["name"] for r in client.get("/api/repositories").json()] == ["platform"]

        resp = client.put(f"/api/repositories/{created['id']}", json={"description": "all"})
        assert resp.json()["description"] == "all"

        assert client.delete(f"/api/repositories/{created['id']}").status_code == 204
        assert client.get(f"/api/repositories/{created['id']}").status_code == 404

    def test_duplicate_url(self, client):
        create_monorepo(client)
        resp = client.post(
            "/api/repositories",
            json={"name": "again", "url": "https://github.com/acme/platform", "type": "monorepo"},
        )
        assert resp.status_code == 409

    def test_invalid_type(self, client):
        resp = client.post(
            "/api/repositories",
            json={"name": "x", "url": "https://github.com/acme/x", "type": "helm"},
        )
        assert resp.status_code == 422


class TestSyncApi:
    def test_manual_sync_returns_report(self, client, github):
        github.services = Outcome.found([ServiceInfo("api", "services/api")])
        repo = create_monorepo(client)

        resp = client.post(f"/api/repositories/{repo['id']}/sync")

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["services"]["inserted"] == 1
        services = client.get("/api/microservices", params={"repository_id": repo["id"]}).json()
        assert [s["name"] for s in services] == ["api"]

    def test_manual_sync_configuration_error(self, client):
        repo = create_monorepo(client, url="git@github.com:acme/platform.git")
        resp = client.post(f"/api/repositories/{repo['id']}/sync")
        assert resp.status_code == 400
        assert "HTTPS" in resp.json()["detail"]

    def test_manual_sync_remote_error(self, client, github, remote_error):
        github.failures["discover_services"] = remote_error
        repo = create_monorepo(client)
        resp = client.post(f"/api/repositories/{repo['id']}/sync")
        assert resp.status_code == 502

    def test_unknown_repository(self, client):
        assert client.post("/api/repositories/999/sync").status_code == 404

    def test_sync_all(self, client, github):
        create_monorepo(client)
        resp = client.post("/api/sync")
        assert resp.status_code == 200
        assert [r["repository_name"] for r in resp.json()] == ["platform"]

    def test_rediscover(self, client, github):
        github.services = Outcome.found([ServiceInfo("api", "services/api")])
        repo = create_monorepo(client)
        resp = client.post(f"/api/repositories/{repo['id']}/rediscover")
        assert resp.json() == {"inserted": 1, "updated": 0, "deleted": 0}

    def test_check_access(self, client, github, remote_error):
        resp = client.post("/api/repositories/check-access", json={"url": "https://github.com/acme/platform"})
        assert resp.json()["default_branch"] == "main"

        resp = client.post("/api/repositories/check-access", json={"url": "git@github.com:acme/x.git"})
        assert resp.status_code == 400

        github.failures["get_repository"] = remote_error
        resp = client.post("/api/repositories/check-access", json={"url": "https://github.com/acme/platform"})
        assert resp.status_code == 502


class TestReadApi:
    def test_dashboard_stats(self, client):
        create_monorepo(client)
        stats = client.get("/api/dashboard/stats").json()
        assert stats["repositories"] == 1
        assert stats["recent_actions"] == []

    def test_missing_microservice(self, client):
        assert client.get("/api/microservices/42/actions").status_code == 404
        assert client.get("/api/microservices/42/deployments").status_code == 404


class TestConfigApi:
    def test_secrets_are_masked(self, client):
        client.put("/api/config/github_enterprise_url", json={"value": "https://git.corp"})
        client.put("/api/config/jira_token", json={"value": "hunter2"})
        assert client.get("/api/config").json() == {
            "github_enterprise_url": "https://git.corp",
            "jira_token": "********",
        }
        assert client.get("/api/config/missing").status_code == 404

    def test_delete_setting(self, client):
        client.put("/api/config/jira_url", json={"value": "https://jira.example.com"})
        assert client.delete("/api/config/jira_url").status_code == 204
        assert client.get("/api/config/jira_url").status_code == 404

    def test_jira_test_without_configuration(self, client):
        assert client.post("/api/jira/test").status_code == 400


class TestPlannerApi:
    def test_project_and_tasks(self, client):
        project = client.post("/api/projects", json={"name": "Checkout"}).json()
        resp = client.post(
            "/api/tasks",
            json={
                "project_id": project["id"],
                "jira_ticket_id": "OPS-1",
                "title": "Login",
                "deadline": "2024-06-10",
            },
        )
        assert resp.status_code == 201
        task = resp.json()
        assert task["status"] == "pending"
        assert task["jira_title"] is None

        resp = client.patch(f"/api/tasks/{task['id']}/status", json={"status": "completed"})
        assert resp.json()["status"] == "completed"

        rows = client.get("/api/tasks", params={"start": "2024-06-01", "end": "2024-06-30"}).json()
        assert [(r["title"], r["project_name"]) for r in rows] == [("Login", "Checkout")]
        assert client.get("/api/tasks", params={"start": "2024-06-01"}).status_code == 400

        assert client.delete(f"/api/projects/{project['id']}").status_code == 204
        assert client.get(f"/api/tasks/{task['id']}").status_code == 404
