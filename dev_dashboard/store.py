"""
Record Store Module

Durable storage for repositories, microservices, Kubernetes resources,
actions, deployments and settings. Batch reconciliation methods run in a
single transaction each, so a failure leaves the previous rows untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dev_dashboard.database import get_sync_session
from dev_dashboard.exceptions import (
    DuplicateRecord,
    ReconciliationError,
    RecordNotFound,
    RepositoryNotFound,
)
from dev_dashboard.models import (
    Action,
    ConfigEntry,
    Deployment,
    KubernetesResource,
    Microservice,
    Repository,
    RepositoryType,
    utcnow,
)

logger = logging.getLogger(__name__)

REPOSITORY_FIELDS = ("name", "url", "type", "description", "service_name", "service_location")


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0


class RecordStore:
    """
    Record store over a SQLAlchemy engine.
    """

    def __init__(self, engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def list_repositories(self) -> List[Repository]:
        with get_sync_session(self.engine) as session:
            return list(session.scalars(select(Repository).order_by(Repository.name, Repository.id)))

    def get_repository(self, repository_id: int) -> Repository:
        with get_sync_session(self.engine) as session:
            repository = session.get(Repository, repository_id)
            if repository is None:
                raise RepositoryNotFound(f"repository {repository_id} not found")
            return repository

    def create_repository(
        self,
        name: str,
        url: str,
        type: RepositoryType,
        description: str = "",
        service_name: str = "",
        service_location: str = "",
    ) -> Repository:
        repository = Repository(
            name=name,
            url=url,
            type=RepositoryType(type),
            description=description or "",
            service_name=service_name or "",
            service_location=service_location or "",
        )
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    session.add(repository)
        except IntegrityError as e:
            raise DuplicateRecord(f"repository {url} is already registered") from e
        logger.info(f"Created repository {repository.name} ({repository.url})")
        return repository

    def update_repository(self, repository_id: int, **fields) -> Repository:
        unknown = set(fields) - set(REPOSITORY_FIELDS)
        if unknown:
            raise ValueError(f"unknown repository fields: {sorted(unknown)}")
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    repository = session.get(Repository, repository_id)
                    if repository is None:
                        raise RepositoryNotFound(f"repository {repository_id} not found")
                    for key, value in fields.items():
                        if key == "type":
                            value = RepositoryType(value)
                        setattr(repository, key, value if value is not None else "")
                return repository
        except IntegrityError as e:
            raise DuplicateRecord(f"repository {repository_id} conflicts with an existing URL") from e

    def delete_repository(self, repository_id: int) -> None:
        """Delete a repository; its services, resources, actions and deployments cascade."""
        with get_sync_session(self.engine) as session:
            with session.begin():
                result = session.execute(delete(Repository).where(Repository.id == repository_id))
                if result.rowcount == 0:
                    raise RepositoryNotFound(f"repository {repository_id} not found")
        logger.info(f"Deleted repository {repository_id}")

    def touch_last_sync(self, repository_id: int, when: Optional[datetime] = None) -> None:
        with get_sync_session(self.engine) as session:
            with session.begin():
                repository = session.get(Repository, repository_id)
                if repository is None:
                    raise RepositoryNotFound(f"repository {repository_id} not found")
                repository.last_sync_at = when or utcnow()

    # ------------------------------------------------------------------
    # Microservices
    # ------------------------------------------------------------------

    def list_microservices(self, repository_id: Optional[int] = None) -> List[Microservice]:
        """Services of one repository, or of every monorepo when no id is given."""
        stmt = select(Microservice).order_by(Microservice.name, Microservice.id)
        if repository_id is None:
            stmt = stmt.join(Repository, Microservice.repository_id == Repository.id).where(
                Repository.type == RepositoryType.MONOREPO
            )
        else:
            stmt = stmt.where(Microservice.repository_id == repository_id)
        with get_sync_session(self.engine) as session:
            return list(session.scalars(stmt))

    def all_microservices(self) -> List[Microservice]:
        with get_sync_session(self.engine) as session:
            return list(
                session.scalars(select(Microservice).order_by(Microservice.name, Microservice.id))
            )

    def get_microservice(self, service_id: int) -> Microservice:
        with get_sync_session(self.engine) as session:
            service = session.get(Microservice, service_id)
            if service is None:
                raise RecordNotFound(f"microservice {service_id} not found")
            return service

    def upsert_services_preserving_identity(
        self, repository_id: int, services: Iterable[Any]
    ) -> ReconcileResult:
        """
        Reconcile the discovered services of a repository.

        Rows are matched on (name, path): matches are updated in place so their
        ids (and the actions and deployments pointing at them) survive,
        missing ones are deleted and new ones inserted.
        """
        discovered: Dict[tuple, Any] = {}
        for service in services:
            key = (service.name, service.path)
            if key not in discovered:
                discovered[key] = service

        result = ReconcileResult()
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    existing = {
                        (row.name, row.path): row
                        for row in session.scalars(
                            select(Microservice).where(Microservice.repository_id == repository_id)
                        )
                    }

                    # Deletes go first so a service that moved can reuse its name.
                    for key, row in existing.items():
                        if key not in discovered:
                            session.delete(row)
                            result.deleted += 1
                    session.flush()

                    for key, service in discovered.items():
                        description = getattr(service, "description", "") or ""
                        row = existing.get(key)
                        if row is not None:
                            if row.description != description:
                                row.description = description
                            result.updated += 1
                        else:
                            session.add(
                                Microservice(
                                    repository_id=repository_id,
                                    name=service.name,
                                    path=service.path,
                                    description=description,
                                )
                            )
                            result.inserted += 1
        except SQLAlchemyError as e:
            raise ReconciliationError(
                f"failed to reconcile microservices for repository {repository_id}: {e}"
            ) from e

        logger.info(
            f"Reconciled microservices for repository {repository_id}: "
            f"{result.inserted} inserted, {result.updated} updated, {result.deleted} deleted"
        )
        return result

    # ------------------------------------------------------------------
    # Kubernetes resources
    # ------------------------------------------------------------------

    def list_kubernetes_resources(self, repository_id: int) -> List[KubernetesResource]:
        with get_sync_session(self.engine) as session:
            return list(
                session.scalars(
                    select(KubernetesResource)
                    .where(KubernetesResource.repository_id == repository_id)
                    .order_by(KubernetesResource.name, KubernetesResource.id)
                )
            )

    def get_kubernetes_resource(self, resource_id: int) -> KubernetesResource:
        with get_sync_session(self.engine) as session:
            resource = session.get(KubernetesResource, resource_id)
            if resource is None:
                raise RecordNotFound(f"kubernetes resource {resource_id} not found")
            return resource

    def replace_kubernetes_resources(self, repository_id: int, resources: Iterable[Any]) -> int:
        """Delete all resources of the repository and insert the discovered set."""
        unique: Dict[tuple, Any] = {}
        for resource in resources:
            key = (resource.name, resource.namespace or "")
            if key in unique:
                logger.warning(
                    f"Duplicate resource {resource.name} in namespace '{key[1]}' "
                    f"({resource.path}), keeping {unique[key].path}"
                )
                continue
            unique[key] = resource

        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    session.execute(
                        delete(KubernetesResource).where(
                            KubernetesResource.repository_id == repository_id
                        )
                    )
                    session.add_all(
                        KubernetesResource(
                            repository_id=repository_id,
                            name=resource.name,
                            path=resource.path,
                            resource_type=resource.resource_type,
                            namespace=resource.namespace or "",
                        )
                        for resource in unique.values()
                    )
        except SQLAlchemyError as e:
            raise ReconciliationError(
                f"failed to replace kubernetes resources for repository {repository_id}: {e}"
            ) from e
        return len(unique)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def upsert_actions(self, actions: List[Dict[str, Any]]) -> int:
        """Insert or replace actions keyed on workflow_run_id, in one transaction."""
        if not actions:
            return 0
        now = utcnow()
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    for action in actions:
                        values = dict(action)
                        values.setdefault("created_at", now)
                        values["updated_at"] = now
                        stmt = insert(Action).values(**values)
                        replaced = {
                            column: stmt.excluded[column]
                            for column in values
                            if column not in ("workflow_run_id", "created_at")
                        }
                        session.execute(
                            stmt.on_conflict_do_update(
                                index_elements=[Action.workflow_run_id], set_=replaced
                            )
                        )
        except SQLAlchemyError as e:
            raise ReconciliationError(f"failed to upsert actions: {e}") from e
        return len(actions)

    def _list_actions(self, where, limit: int) -> List[Dict[str, Any]]:
        stmt = (
            select(Action, Microservice.name, KubernetesResource.name, Repository.name)
            .join(Repository, Action.repository_id == Repository.id)
            .outerjoin(Microservice, Action.service_id == Microservice.id)
            .outerjoin(KubernetesResource, Action.resource_id == KubernetesResource.id)
            .where(where)
            .order_by(Action.started_at.desc(), Action.id.desc())
            .limit(limit)
        )
        with get_sync_session(self.engine) as session:
            rows = session.execute(stmt).all()
        details = []
        for action, service_name, resource_name, repository_name in rows:
            details.append(
                {
                    "action": action,
                    "service_name": service_name or "",
                    "resource_name": resource_name or "",
                    "repository_name": repository_name or "",
                }
            )
        return details

    def list_actions_for_repository(self, repository_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return self._list_actions(Action.repository_id == repository_id, limit)

    def list_actions_for_service(self, service_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return self._list_actions(Action.service_id == service_id, limit)

    def list_actions_for_resource(self, resource_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return self._list_actions(Action.resource_id == resource_id, limit)

    def recent_actions(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self._list_actions(Action.id.isnot(None), limit)

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def upsert_deployment(
        self,
        service_id: int,
        kubernetes_repo_id: int,
        commit_sha: str,
        environment: str,
        region: str,
        namespace: str,
        tag: str,
        path: str,
    ) -> None:
        """One row per (service, environment, region, namespace); the latest call wins."""
        now = utcnow()
        stmt = insert(Deployment).values(
            service_id=service_id,
            kubernetes_repo_id=kubernetes_repo_id,
            commit_sha=commit_sha or "",
            environment=environment,
            region=region,
            namespace=namespace or "",
            tag=tag,
            path=path,
            discovered_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                Deployment.service_id,
                Deployment.environment,
                Deployment.region,
                Deployment.namespace,
            ],
            set_={
                "kubernetes_repo_id": stmt.excluded.kubernetes_repo_id,
                "commit_sha": stmt.excluded.commit_sha,
                "tag": stmt.excluded.tag,
                "path": stmt.excluded.path,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    session.execute(stmt)
        except SQLAlchemyError as e:
            raise ReconciliationError(
                f"failed to upsert deployment for service {service_id}: {e}"
            ) from e

    def list_deployments_for_service(self, service_id: int) -> List[Deployment]:
        with get_sync_session(self.engine) as session:
            return list(
                session.scalars(
                    select(Deployment)
                    .where(Deployment.service_id == service_id)
                    .order_by(Deployment.environment, Deployment.region, Deployment.namespace)
                )
            )

    def deployment_overview(self, service_id: int) -> List[Dict[str, Any]]:
        """Current deployments of a service with the name of the kubernetes repository."""
        stmt = (
            select(Deployment, Repository.name)
            .join(Repository, Deployment.kubernetes_repo_id == Repository.id)
            .where(Deployment.service_id == service_id)
            .order_by(Deployment.environment, Deployment.region, Deployment.namespace)
        )
        with get_sync_session(self.engine) as session:
            rows = session.execute(stmt).all()
        return [
            {
                "commit_sha": deployment.commit_sha,
                "environment": deployment.environment,
                "region": deployment.region,
                "namespace": deployment.namespace or "",
                "tag": deployment.tag,
                "updated_at": deployment.updated_at,
                "kubernetes_repo_name": repository_name,
            }
            for deployment, repository_name in rows
        ]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_config(self, key: str) -> Optional[str]:
        with get_sync_session(self.engine) as session:
            entry = session.get(ConfigEntry, key)
            return entry.value if entry else None

    def set_config(self, key: str, value: str) -> None:
        now = utcnow()
        stmt = insert(ConfigEntry).values(key=key, value=value or "", updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        with get_sync_session(self.engine) as session:
            with session.begin():
                session.execute(stmt)

    def all_config(self) -> Dict[str, str]:
        with get_sync_session(self.engine) as session:
            return {entry.key: entry.value for entry in session.scalars(select(ConfigEntry))}

    def delete_config(self, key: str) -> None:
        with get_sync_session(self.engine) as session:
            with session.begin():
                session.execute(delete(ConfigEntry).where(ConfigEntry.key == key))

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard_stats(self, recent_limit: int = 10) -> Dict[str, Any]:
        with get_sync_session(self.engine) as session:
            repositories = session.scalar(select(func.count(Repository.id))) or 0
            microservices = session.scalar(
                select(func.count(Microservice.id))
                .join(Repository, Microservice.repository_id == Repository.id)
                .where(Repository.type == RepositoryType.MONOREPO)
            ) or 0
            resources = session.scalar(select(func.count(KubernetesResource.id))) or 0
            deployments = session.scalar(select(func.count(Deployment.id))) or 0
        return {
            "repositories": repositories,
            "microservices": microservices,
            "kubernetes_resources": resources,
            "deployments": deployments,
            "recent_actions": self.recent_actions(recent_limit),
        }
