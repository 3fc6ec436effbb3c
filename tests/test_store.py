from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect, text

from dev_dashboard.database import init_db, dispose_engine, run_migrations
from dev_dashboard.exceptions import DuplicateRecord, RecordNotFound, RepositoryNotFound
from dev_dashboard.kubernetes.manifests import ResourceInfo
from dev_dashboard.models import ActionType, RepositoryType
from dev_dashboard.store import RecordStore
from dev_dashboard.vcs.client import ServiceInfo

STARTED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def action(repository_id, run_id, status="success", **extra):
    values = {
        "repository_id": repository_id,
        "type": ActionType.BUILD,
        "status": status,
        "workflow_run_id": run_id,
        "commit_sha": "a" * 40,
        "branch": "main",
        "started_at": STARTED + timedelta(minutes=run_id),
        "completed_at": None,
    }
    values.update(extra)
    return values


class TestRepositories:
    def test_create_and_get(self, store, monorepo):
        repository = store.get_repository(monorepo.id)
        assert repository.name == "platform"
        assert repository.type is RepositoryType.MONOREPO
        assert repository.last_sync_at is None

    def test_duplicate_url(self, store, monorepo):
        with pytest.raises(DuplicateRecord):
            store.create_repository("again", monorepo.url, RepositoryType.MONOREPO)

    def test_update(self, store, monorepo):
        store.update_repository(monorepo.id, description="all services", service_location="apps")
        repository = store.get_repository(monorepo.id)
        assert repository.description == "all services"
        assert repository.service_location == "apps"

    def test_update_rejects_unknown_fields(self, store, monorepo):
        with pytest.raises(ValueError):
            store.update_repository(monorepo.id, owner="someone")

    def test_missing_repository(self, store):
        with pytest.raises(RepositoryNotFound):
            store.get_repository(404)
        with pytest.raises(RepositoryNotFound):
            store.delete_repository(404)

    def test_touch_last_sync(self, store, monorepo):
        store.touch_last_sync(monorepo.id)
        assert store.get_repository(monorepo.id).last_sync_at is not None

    def test_delete_cascades(self, store, monorepo, k8s_repo):
        store.upsert_services_preserving_identity(
            monorepo.id, [ServiceInfo("web", "services/web")]
        )
        service = store.list_microservices(monorepo.id)[0]
        store.upsert_actions([action(monorepo.id, 1, service_id=service.id)])
        store.upsert_deployment(service.id, k8s_repo.id, "a" * 40, "prod", "eu", "web", "v1", "p")

        store.delete_repository(monorepo.id)

        assert store.list_microservices(monorepo.id) == []
        assert store.list_actions_for_repository(monorepo.id) == []
        assert store.list_deployments_for_service(service.id) == []
        with pytest.raises(RecordNotFound):
            store.get_microservice(service.id)


class TestMicroservices:
    def test_upsert_is_idempotent(self, store, monorepo):
        discovered = [
            ServiceInfo("api", "services/api", "API"),
            ServiceInfo("web", "services/web", "Web"),
        ]
        first = store.upsert_services_preserving_identity(monorepo.id, discovered)
        ids = {s.name: s.id for s in store.list_microservices(monorepo.id)}

        second = store.upsert_services_preserving_identity(monorepo.id, discovered)

        assert (first.inserted, first.updated, first.deleted) == (2, 0, 0)
        assert (second.inserted, second.updated, second.deleted) == (0, 2, 0)
        assert {s.name: s.id for s in store.list_microservices(monorepo.id)} == ids

    def test_identity_survives_and_stale_rows_go(self, store, monorepo):
        store.upsert_services_preserving_identity(
            monorepo.id,
            [ServiceInfo("api", "services/api"), ServiceInfo("old", "services/old")],
        )
        api_id = next(s.id for s in store.list_microservices(monorepo.id) if s.name == "api")
        store.upsert_actions([action(monorepo.id, 10, service_id=api_id)])

        result = store.upsert_services_preserving_identity(
            monorepo.id,
            [ServiceInfo("api", "services/api", "now documented"), ServiceInfo("new", "services/new")],
        )

        services = {s.name: s for s in store.list_microservices(monorepo.id)}
        assert set(services) == {"api", "new"}
        assert services["api"].id == api_id
        assert services["api"].description == "now documented"
        assert (result.inserted, result.updated, result.deleted) == (1, 1, 1)
        assert store.list_actions_for_service(api_id)[0]["action"].workflow_run_id == 10

    def test_moved_service_is_replaced(self, store, monorepo):
        store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("api", "services/api")])
        result = store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("api", "apps/api")])
        services = store.list_microservices(monorepo.id)
        assert [(s.name, s.path) for s in services] == [("api", "apps/api")]
        assert (result.inserted, result.deleted) == (1, 1)

    def test_list_without_repository_only_covers_monorepos(self, store, monorepo, k8s_repo):
        store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("api", "services/api")])
        store.upsert_services_preserving_identity(k8s_repo.id, [ServiceInfo("odd", "services/odd")])
        assert [s.name for s in store.list_microservices()] == ["api"]
        assert [s.name for s in store.all_microservices()] == ["api", "odd"]


class TestKubernetesResources:
    def test_replace_deduplicates(self, store, k8s_repo):
        count = store.replace_kubernetes_resources(
            k8s_repo.id,
            [
                ResourceInfo("api", "k8s/a.yaml", "Deployment", "shop"),
                ResourceInfo("api", "k8s/b.yaml", "Service", "shop"),
                ResourceInfo("api", "k8s/c.yaml", "Service", ""),
            ],
        )
        resources = store.list_kubernetes_resources(k8s_repo.id)
        assert count == 2
        assert sorted((r.path, r.namespace) for r in resources) == [
            ("k8s/a.yaml", "shop"),
            ("k8s/c.yaml", ""),
        ]

    def test_replace_drops_previous_rows(self, store, k8s_repo):
        store.replace_kubernetes_resources(k8s_repo.id, [ResourceInfo("a", "k8s/a.yaml", "Service")])
        store.replace_kubernetes_resources(k8s_repo.id, [ResourceInfo("b", "k8s/b.yaml", "Service")])
        assert [r.name for r in store.list_kubernetes_resources(k8s_repo.id)] == ["b"]


class TestActions:
    def test_upsert_replaces_on_run_id(self, store, monorepo):
        store.upsert_actions([action(monorepo.id, 1, status="in_progress")])
        store.upsert_actions([action(monorepo.id, 1, status="success"), action(monorepo.id, 2)])

        rows = store.list_actions_for_repository(monorepo.id)
        assert [r["action"].workflow_run_id for r in rows] == [2, 1]
        assert rows[1]["action"].status == "success"
        assert rows[0]["repository_name"] == "platform"

    def test_empty_batch(self, store):
        assert store.upsert_actions([]) == 0

    def test_recent_actions_limit(self, store, monorepo):
        store.upsert_actions([action(monorepo.id, i) for i in range(1, 6)])
        assert [r["action"].workflow_run_id for r in store.recent_actions(3)] == [5, 4, 3]


class TestDeployments:
    def test_one_row_per_target_with_latest_tag(self, store, monorepo, k8s_repo):
        store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("web", "services/web")])
        service = store.list_microservices(monorepo.id)[0]

        store.upsert_deployment(service.id, k8s_repo.id, "a" * 40, "prod", "eu", "web", "v1", "p1")
        first = store.list_deployments_for_service(service.id)[0]
        store.upsert_deployment(service.id, k8s_repo.id, "b" * 40, "prod", "eu", "web", "v2", "p2")

        deployments = store.list_deployments_for_service(service.id)
        assert len(deployments) == 1
        assert deployments[0].tag == "v2"
        assert deployments[0].commit_sha == "b" * 40
        assert deployments[0].id == first.id
        assert deployments[0].discovered_at == first.discovered_at

    def test_namespaces_are_separate_targets(self, store, monorepo, k8s_repo):
        store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("web", "services/web")])
        service = store.list_microservices(monorepo.id)[0]
        store.upsert_deployment(service.id, k8s_repo.id, "", "prod", "eu", "a", "v1", "p")
        store.upsert_deployment(service.id, k8s_repo.id, "", "prod", "eu", "b", "v1", "p")

        overview = store.deployment_overview(service.id)
        assert [d["namespace"] for d in overview] == ["a", "b"]
        assert overview[0]["kubernetes_repo_name"] == "deployments"


class TestSettings:
    def test_set_is_upsert(self, store):
        assert store.get_config("github_token") is None
        store.set_config("github_token", "one")
        store.set_config("github_token", "two")
        assert store.get_config("github_token") == "two"
        assert store.all_config() == {"github_token": "two"}
        store.delete_config("github_token")
        assert store.get_config("github_token") is None


def test_dashboard_stats(store, monorepo, k8s_repo):
    store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("web", "services/web")])
    store.upsert_actions([action(monorepo.id, 1)])
    stats = store.dashboard_stats()
    assert stats["repositories"] == 2
    assert stats["microservices"] == 1
    assert stats["kubernetes_resources"] == 0
    assert len(stats["recent_actions"]) == 1


def test_migrations_add_missing_columns(tmp_path):
    url = f"sqlite:///{tmp_path / 'old.db'}"
    engine = init_db(url)
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE tasks"))
        conn.execute(
            text(
                "CREATE TABLE tasks (id INTEGER PRIMARY KEY, project_id INTEGER, "
                "jira_ticket_id TEXT, title TEXT)"
            )
        )
    try:
        assert run_migrations(engine) == ["tasks.jira_title"]
        columns = {c["name"] for c in inspect(engine).get_columns("tasks")}
        assert "jira_title" in columns
        assert run_migrations(engine) == []
    finally:
        dispose_engine(url)


def test_migrations_rebuild_deployments_without_namespace_key(tmp_path):
    url = f"sqlite:///{tmp_path / 'legacy.db'}"
    engine = init_db(url)
    store = RecordStore(engine)
    monorepo = store.create_repository("platform", "https://github.com/acme/platform", RepositoryType.MONOREPO)
    k8s = store.create_repository("deployments", "https://github.com/acme/deployments", RepositoryType.KUBERNETES)
    store.upsert_services_preserving_identity(monorepo.id, [ServiceInfo("web", "services/web")])
    service = store.list_microservices(monorepo.id)[0]
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE deployments"))
        conn.execute(
            text(
                "CREATE TABLE deployments (id INTEGER PRIMARY KEY, service_id INTEGER NOT NULL, "
                "kubernetes_repo_id INTEGER NOT NULL, commit_sha TEXT NOT NULL DEFAULT '', "
                "environment TEXT NOT NULL, region TEXT NOT NULL, tag TEXT NOT NULL, "
                "path TEXT NOT NULL, discovered_at DATETIME, updated_at DATETIME, "
                "UNIQUE (service_id, environment, region))"
            )
        )
        conn.execute(
            text(
                "INSERT INTO deployments (service_id, kubernetes_repo_id, environment, region, tag, path) "
                "VALUES (:service, :repo, 'prod', 'eu', 'v1', 'old/kustomization.yaml')"
            ),
            {"service": service.id, "repo": k8s.id},
        )
    try:
        assert run_migrations(engine) == [
            "deployments.namespace",
            "deployments(service_id, environment, region, namespace)",
        ]
        assert run_migrations(engine) == []

        store.upsert_deployment(service.id, k8s.id, "", "prod", "eu", "ns-a", "v2", "a/kustomization.yaml")
        store.upsert_deployment(service.id, k8s.id, "", "prod", "eu", "ns-b", "v3", "b/kustomization.yaml")
        store.upsert_deployment(service.id, k8s.id, "", "prod", "eu", "ns-a", "v4", "a/kustomization.yaml")

        rows = {d.namespace: d.tag for d in store.list_deployments_for_service(service.id)}
        assert rows == {"": "v1", "ns-a": "v4", "ns-b": "v3"}
    finally:
        dispose_engine(url)
