"""
Database Models

This module defines the database models for the application.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class RepositoryType(str, enum.Enum):
    MONOREPO = "monorepo"
    KUBERNETES = "kubernetes-resources"


class ActionType(str, enum.Enum):
    BUILD = "build"
    DEPLOYMENT = "deployment"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Repository(Base):
    """A tracked GitHub repository."""

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False, unique=True)
    type = Column(
        Enum(RepositoryType, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
        index=True,
    )
    description = Column(Text, default="")
    service_name = Column(String, default="")
    service_location = Column(String, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Repository(id={self.id}, name={self.name}, type={self.type})>"


class Microservice(Base):
    """A service directory discovered inside a monorepo."""

    __tablename__ = "microservices"
    __table_args__ = (UniqueConstraint("repository_id", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    path = Column(String, nullable=False)
    description = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Microservice(id={self.id}, name={self.name}, path={self.path})>"


class KubernetesResource(Base):
    """A Kubernetes manifest found in a kubernetes-resources repository."""

    __tablename__ = "kubernetes_resources"
    __table_args__ = (UniqueConstraint("repository_id", "name", "namespace"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    path = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)
    namespace = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return (
            f"<KubernetesResource(id={self.id}, kind={self.resource_type}, "
            f"name={self.name}, namespace={self.namespace})>"
        )


class Action(Base):
    """A workflow run classified as a build or a deployment."""

    __tablename__ = "actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id = Column(
        Integer, ForeignKey("microservices.id", ondelete="CASCADE"), nullable=True, index=True
    )
    resource_id = Column(
        Integer,
        ForeignKey("kubernetes_resources.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type = Column(
        Enum(ActionType, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        index=True,
    )
    # Mirrors GitHub's vocabulary, so it stays an open string.
    status = Column(String, nullable=False, index=True)
    workflow_run_id = Column(Integer, nullable=False, unique=True)
    commit_sha = Column(String, nullable=False, default="")
    branch = Column(String, nullable=False, default="")
    build_hash = Column(String, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Action(run={self.workflow_run_id}, type={self.type}, status={self.status})>"


class Deployment(Base):
    """What is currently deployed to one (service, environment, region, namespace)."""

    __tablename__ = "deployments"
    __table_args__ = (UniqueConstraint("service_id", "environment", "region", "namespace"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(
        Integer, ForeignKey("microservices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kubernetes_repo_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    commit_sha = Column(String, nullable=False, default="", index=True)
    environment = Column(String, nullable=False, index=True)
    region = Column(String, nullable=False, index=True)
    namespace = Column(String, nullable=False, default="")
    tag = Column(String, nullable=False)
    path = Column(String, nullable=False)
    discovered_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return (
            f"<Deployment(service={self.service_id}, target={self.environment}/"
            f"{self.region}/{self.namespace}, tag={self.tag})>"
        )


class Project(Base):
    """Planner project."""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Task(Base):
    """Planner task linked to a ticket key."""

    __tablename__ = "tasks"
    __table_args__ = (UniqueConstraint("project_id", "jira_ticket_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    jira_ticket_id = Column(String, nullable=False, index=True)
    jira_title = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    scheduled_date = Column(Date, nullable=True, index=True)
    deadline = Column(Date, nullable=True, index=True)
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        default=TaskStatus.PENDING,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ConfigEntry(Base):
    """Key/value setting edited from the settings page."""

    __tablename__ = "config"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
