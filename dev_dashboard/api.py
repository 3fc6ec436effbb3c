"""
API Module

REST endpoints over the record store, the sync orchestrator and the planner.
"""
import dataclasses
import enum
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect

from dev_dashboard.exceptions import (
    DuplicateRecord,
    GitHubAPIError,
    JiraAuthError,
    JiraError,
    RecordNotFound,
    RepositoryNotFound,
    SyncConfigurationError,
)
from dev_dashboard.models import RepositoryType, TaskStatus

logger = logging.getLogger(__name__)
router = APIRouter()

SECRET_MARKERS = ("token", "password", "secret")


def get_runtime(request: Request):
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not initialized")
    return runtime


def to_dict(record) -> Dict[str, Any]:
    """Column values of an ORM row, enums flattened to their values."""
    values = {}
    for column in sa_inspect(record).mapper.column_attrs:
        value = getattr(record, column.key)
        if isinstance(value, enum.Enum):
            value = value.value
        values[column.key] = value
    return values


def _action_details(rows) -> List[Dict[str, Any]]:
    return [
        {
            **to_dict(row["action"]),
            "service_name": row["service_name"],
            "resource_name": row["resource_name"],
            "repository_name": row["repository_name"],
        }
        for row in rows
    ]


def _task_rows(rows) -> List[Dict[str, Any]]:
    return [{**to_dict(row["task"]), "project_name": row["project_name"]} for row in rows]


def _as_http_error(e: Exception, what: str) -> HTTPException:
    """Log the failure and map it to a status code."""
    logger.error(f"Error {what}: {e}")
    if isinstance(e, (RepositoryNotFound, RecordNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateRecord):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (SyncConfigurationError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, JiraAuthError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, (GitHubAPIError, JiraError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail="Internal server error")


def _mask(key: str, value: str) -> str:
    if value and any(marker in key.lower() for marker in SECRET_MARKERS):
        return "********"
    return value


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------


class RepositoryIn(BaseModel):
    name: str
    url: str
    type: RepositoryType
    description: str = ""
    service_name: str = ""
    service_location: str = ""


class RepositoryUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    type: Optional[RepositoryType] = None
    description: Optional[str] = None
    service_name: Optional[str] = None
    service_location: Optional[str] = None


class RepositoryAccessIn(BaseModel):
    url: str


class ConfigValue(BaseModel):
    value: str


class ProjectIn(BaseModel):
    name: str
    description: str = ""


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class TaskIn(BaseModel):
    project_id: int
    jira_ticket_id: str
    title: str
    description: str = ""
    scheduled_date: Optional[date] = None
    deadline: Optional[date] = None
    status: TaskStatus = TaskStatus.PENDING


class TaskUpdate(BaseModel):
    project_id: Optional[int] = None
    jira_ticket_id: Optional[str] = None
    jira_title: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    deadline: Optional[date] = None
    status: Optional[TaskStatus] = None


class TaskStatusIn(BaseModel):
    status: TaskStatus


def _changes(body: BaseModel) -> Dict[str, Any]:
    return body.model_dump(exclude_unset=True)


# ----------------------------------------------------------------------
# Repositories and sync
# ----------------------------------------------------------------------


@router.get("/repositories")
def list_repositories(runtime=Depends(get_runtime)):
    try:
        return [to_dict(r) for r in runtime.store.list_repositories()]
    except Exception as e:
        raise _as_http_error(e, "listing repositories")


@router.post("/repositories", status_code=201)
def create_repository(body: RepositoryIn, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.store.create_repository(**body.model_dump()))
    except Exception as e:
        raise _as_http_error(e, "creating repository")


@router.post("/repositories/check-access")
def check_repository_access(body: RepositoryAccessIn, runtime=Depends(get_runtime)):
    try:
        return runtime.orchestrator.check_repository_access(body.url)
    except Exception as e:
        raise _as_http_error(e, f"checking access to {body.url}")


@router.get("/repositories/{repository_id}")
def get_repository(repository_id: int, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.store.get_repository(repository_id))
    except Exception as e:
        raise _as_http_error(e, f"getting repository {repository_id}")


@router.put("/repositories/{repository_id}")
def update_repository(repository_id: int, body: RepositoryUpdate, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.store.update_repository(repository_id, **_changes(body)))
    except Exception as e:
        raise _as_http_error(e, f"updating repository {repository_id}")


@router.delete("/repositories/{repository_id}", status_code=204)
def delete_repository(repository_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.store.delete_repository(repository_id)
    except Exception as e:
        raise _as_http_error(e, f"deleting repository {repository_id}")


@router.post("/repositories/{repository_id}/sync")
def sync_repository(repository_id: int, runtime=Depends(get_runtime)):
    """
    Sync one repository now and return its report. The first failure is
    returned as the error detail.
    """
    try:
        return dataclasses.asdict(runtime.orchestrator.sync_repository(repository_id))
    except Exception as e:
        raise _as_http_error(e, f"syncing repository {repository_id}")


@router.post("/sync")
def sync_all(runtime=Depends(get_runtime)):
    try:
        return [dataclasses.asdict(report) for report in runtime.orchestrator.sync_all()]
    except Exception as e:
        raise _as_http_error(e, "syncing all repositories")


@router.post("/repositories/{repository_id}/rediscover")
def rediscover_services(repository_id: int, runtime=Depends(get_runtime)):
    try:
        return dataclasses.asdict(runtime.orchestrator.rediscover_services(repository_id))
    except Exception as e:
        raise _as_http_error(e, f"rediscovering services of repository {repository_id}")


@router.get("/repositories/{repository_id}/actions")
def recent_repository_actions(
    repository_id: int,
    limit: int = Query(10, description="Number of actions to return"),
    runtime=Depends(get_runtime),
):
    try:
        runtime.store.get_repository(repository_id)
        return _action_details(runtime.store.list_actions_for_repository(repository_id, limit))
    except Exception as e:
        raise _as_http_error(e, f"getting actions of repository {repository_id}")


@router.get("/repositories/{repository_id}/kubernetes-resources")
def list_kubernetes_resources(repository_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.store.get_repository(repository_id)
        return [to_dict(r) for r in runtime.store.list_kubernetes_resources(repository_id)]
    except Exception as e:
        raise _as_http_error(e, f"getting kubernetes resources of repository {repository_id}")


@router.get("/kubernetes-resources/{resource_id}/actions")
def kubernetes_resource_actions(
    resource_id: int,
    limit: int = Query(50, description="Number of actions to return"),
    runtime=Depends(get_runtime),
):
    try:
        runtime.store.get_kubernetes_resource(resource_id)
        return _action_details(runtime.store.list_actions_for_resource(resource_id, limit))
    except Exception as e:
        raise _as_http_error(e, f"getting actions of resource {resource_id}")


# ----------------------------------------------------------------------
# Microservices
# ----------------------------------------------------------------------


@router.get("/microservices")
def list_microservices(
    repository_id: Optional[int] = Query(None, description="Restrict to one repository"),
    runtime=Depends(get_runtime),
):
    try:
        return [to_dict(s) for s in runtime.store.list_microservices(repository_id)]
    except Exception as e:
        raise _as_http_error(e, "listing microservices")


@router.get("/microservices/{service_id}")
def get_microservice(service_id: int, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.store.get_microservice(service_id))
    except Exception as e:
        raise _as_http_error(e, f"getting microservice {service_id}")


@router.get("/microservices/{service_id}/actions")
def microservice_actions(
    service_id: int,
    limit: int = Query(50, description="Number of actions to return"),
    runtime=Depends(get_runtime),
):
    try:
        runtime.store.get_microservice(service_id)
        return _action_details(runtime.store.list_actions_for_service(service_id, limit))
    except Exception as e:
        raise _as_http_error(e, f"getting actions of microservice {service_id}")


@router.get("/microservices/{service_id}/deployments")
def microservice_deployments(service_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.store.get_microservice(service_id)
        return runtime.store.deployment_overview(service_id)
    except Exception as e:
        raise _as_http_error(e, f"getting deployments of microservice {service_id}")


@router.get("/microservices/{service_id}/commits")
def microservice_commits(
    service_id: int,
    limit: int = Query(100, description="Number of commits to return"),
    runtime=Depends(get_runtime),
):
    try:
        return [dataclasses.asdict(c) for c in runtime.history.service_commits(service_id, limit)]
    except Exception as e:
        raise _as_http_error(e, f"getting commits of microservice {service_id}")


@router.get("/microservices/{service_id}/commit-deployments")
def microservice_commit_deployments(service_id: int, runtime=Depends(get_runtime)):
    try:
        return runtime.history.commit_deployment_statuses(service_id)
    except Exception as e:
        raise _as_http_error(e, f"getting commit deployments of microservice {service_id}")


@router.get("/microservices/{service_id}/pull-requests")
def microservice_pull_requests(service_id: int, runtime=Depends(get_runtime)):
    try:
        return [dataclasses.asdict(pr) for pr in runtime.history.service_pull_requests(service_id)]
    except Exception as e:
        raise _as_http_error(e, f"getting pull requests of microservice {service_id}")


# ----------------------------------------------------------------------
# Dashboard and settings
# ----------------------------------------------------------------------


@router.get("/dashboard/stats")
def dashboard_stats(runtime=Depends(get_runtime)):
    try:
        stats = runtime.store.dashboard_stats()
        stats["recent_actions"] = _action_details(stats["recent_actions"])
        return stats
    except Exception as e:
        raise _as_http_error(e, "getting dashboard stats")


@router.get("/config")
def list_config(runtime=Depends(get_runtime)):
    try:
        return {k: _mask(k, v) for k, v in runtime.store.all_config().items()}
    except Exception as e:
        raise _as_http_error(e, "listing settings")


@router.get("/config/{key}")
def get_config(key: str, runtime=Depends(get_runtime)):
    try:
        value = runtime.store.get_config(key)
    except Exception as e:
        raise _as_http_error(e, f"getting setting {key}")
    if value is None:
        raise HTTPException(status_code=404, detail=f"setting {key} not found")
    return {"key": key, "value": _mask(key, value)}


@router.put("/config/{key}")
def set_config(key: str, body: ConfigValue, runtime=Depends(get_runtime)):
    try:
        runtime.set_config(key, body.value)
        return {"key": key, "value": _mask(key, body.value)}
    except Exception as e:
        raise _as_http_error(e, f"setting {key}")


@router.delete("/config/{key}", status_code=204)
def delete_config(key: str, runtime=Depends(get_runtime)):
    try:
        runtime.delete_config(key)
    except Exception as e:
        raise _as_http_error(e, f"deleting setting {key}")


@router.post("/jira/test")
def test_jira_connection(runtime=Depends(get_runtime)):
    if runtime.jira_client is None:
        raise HTTPException(status_code=400, detail="JIRA not configured")
    try:
        runtime.jira_client.test_connection()
        return {"connected": True}
    except Exception as e:
        raise _as_http_error(e, "testing JIRA connection")


# ----------------------------------------------------------------------
# Planner
# ----------------------------------------------------------------------


@router.get("/projects")
def list_projects(runtime=Depends(get_runtime)):
    try:
        return [to_dict(p) for p in runtime.planner.list_projects()]
    except Exception as e:
        raise _as_http_error(e, "listing projects")


@router.post("/projects", status_code=201)
def create_project(body: ProjectIn, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.create_project(body.name, body.description))
    except Exception as e:
        raise _as_http_error(e, "creating project")


@router.get("/projects/{project_id}")
def get_project(project_id: int, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.get_project(project_id))
    except Exception as e:
        raise _as_http_error(e, f"getting project {project_id}")


@router.put("/projects/{project_id}")
def update_project(project_id: int, body: ProjectUpdate, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.update_project(project_id, **_changes(body)))
    except Exception as e:
        raise _as_http_error(e, f"updating project {project_id}")


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.planner.delete_project(project_id)
    except Exception as e:
        raise _as_http_error(e, f"deleting project {project_id}")


@router.get("/projects/{project_id}/tasks")
def list_project_tasks(project_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.planner.get_project(project_id)
        return [to_dict(t) for t in runtime.planner.list_tasks(project_id)]
    except Exception as e:
        raise _as_http_error(e, f"listing tasks of project {project_id}")


@router.get("/tasks")
def list_tasks(
    start: Optional[date] = Query(None, description="First day of the range"),
    end: Optional[date] = Query(None, description="Last day of the range"),
    runtime=Depends(get_runtime),
):
    """All tasks with their project name, or only those inside [start, end]."""
    try:
        if start is not None or end is not None:
            if start is None or end is None:
                raise ValueError("both start and end are required for a date range")
            return _task_rows(runtime.planner.tasks_in_date_range(start, end))
        return _task_rows(runtime.planner.tasks_with_projects())
    except Exception as e:
        raise _as_http_error(e, "listing tasks")


@router.post("/tasks", status_code=201)
def create_task(
    body: TaskIn,
    fetch_jira_title: bool = Query(True, description="Fill the title from JIRA"),
    runtime=Depends(get_runtime),
):
    try:
        fields = body.model_dump()
        if fetch_jira_title:
            task = runtime.planner.create_task_with_jira_title(**fields)
        else:
            task = runtime.planner.create_task(**fields)
        return to_dict(task)
    except Exception as e:
        raise _as_http_error(e, "creating task")


@router.post("/tasks/refresh-jira-titles")
def refresh_jira_titles(runtime=Depends(get_runtime)):
    if runtime.jira_client is None:
        raise HTTPException(status_code=400, detail="JIRA not configured")
    try:
        return {"updated": runtime.planner.refresh_all_jira_titles()}
    except Exception as e:
        raise _as_http_error(e, "refreshing JIRA titles")


@router.get("/tasks/{task_id}")
def get_task(task_id: int, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.get_task(task_id))
    except Exception as e:
        raise _as_http_error(e, f"getting task {task_id}")


@router.put("/tasks/{task_id}")
def update_task(task_id: int, body: TaskUpdate, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.update_task(task_id, **_changes(body)))
    except Exception as e:
        raise _as_http_error(e, f"updating task {task_id}")


@router.patch("/tasks/{task_id}/status")
def update_task_status(task_id: int, body: TaskStatusIn, runtime=Depends(get_runtime)):
    try:
        return to_dict(runtime.planner.update_task_status(task_id, body.status))
    except Exception as e:
        raise _as_http_error(e, f"updating status of task {task_id}")


@router.post("/tasks/{task_id}/refresh-jira-title")
def refresh_task_jira_title(task_id: int, runtime=Depends(get_runtime)):
    if runtime.jira_client is None:
        raise HTTPException(status_code=400, detail="JIRA not configured")
    try:
        return to_dict(runtime.planner.update_task_jira_title(task_id))
    except Exception as e:
        raise _as_http_error(e, f"refreshing JIRA title of task {task_id}")


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: int, runtime=Depends(get_runtime)):
    try:
        runtime.planner.delete_task(task_id)
    except Exception as e:
        raise _as_http_error(e, f"deleting task {task_id}")
