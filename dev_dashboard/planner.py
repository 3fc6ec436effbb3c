"""
Planner Module

Projects and tasks, each task linked to a JIRA ticket whose summary is kept
in `jira_title` when the tracker is reachable.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError

from dev_dashboard.database import get_sync_session
from dev_dashboard.exceptions import DashboardError, DuplicateRecord, JiraError, RecordNotFound
from dev_dashboard.models import Project, Task, TaskStatus, utcnow

logger = logging.getLogger(__name__)

PROJECT_FIELDS = ("name", "description")
TASK_FIELDS = (
    "project_id",
    "jira_ticket_id",
    "jira_title",
    "title",
    "description",
    "scheduled_date",
    "deadline",
    "status",
)


class Planner:
    def __init__(self, engine, jira_client=None):
        self.engine = engine
        self.jira_client = jira_client

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_projects(self) -> List[Project]:
        with get_sync_session(self.engine) as session:
            return list(session.scalars(select(Project).order_by(Project.name)))

    def get_project(self, project_id: int) -> Project:
        with get_sync_session(self.engine) as session:
            project = session.get(Project, project_id)
            if project is None:
                raise RecordNotFound(f"project {project_id} not found")
            return project

    def create_project(self, name: str, description: str = "") -> Project:
        project = Project(name=name, description=description or "")
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    session.add(project)
        except IntegrityError as e:
            raise DuplicateRecord(f"project {name} already exists") from e
        logger.info(f"Created project {name}")
        return project

    def update_project(self, project_id: int, **fields) -> Project:
        return self._update(Project, project_id, PROJECT_FIELDS, fields, "project")

    def delete_project(self, project_id: int) -> None:
        """Delete a project and, through the foreign key, its tasks."""
        with get_sync_session(self.engine) as session:
            with session.begin():
                result = session.execute(delete(Project).where(Project.id == project_id))
                if result.rowcount == 0:
                    raise RecordNotFound(f"project {project_id} not found")
        logger.info(f"Deleted project {project_id}")

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def list_tasks(self, project_id: Optional[int] = None) -> List[Task]:
        """Tasks ordered by scheduled date (unscheduled last), then deadline."""
        stmt = select(Task).order_by(
            Task.scheduled_date.is_(None), Task.scheduled_date, Task.deadline, Task.id
        )
        if project_id is not None:
            stmt = stmt.where(Task.project_id == project_id)
        with get_sync_session(self.engine) as session:
            return list(session.scalars(stmt))

    def tasks_with_projects(self) -> List[Dict[str, Any]]:
        stmt = (
            select(Task, Project.name)
            .join(Project, Task.project_id == Project.id)
            .order_by(Task.deadline.is_(None), Task.deadline, Task.id)
        )
        with get_sync_session(self.engine) as session:
            rows = session.execute(stmt).all()
        return [{"task": task, "project_name": project_name} for task, project_name in rows]

    def get_task(self, task_id: int) -> Task:
        with get_sync_session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                raise RecordNotFound(f"task {task_id} not found")
            return task

    def create_task(
        self,
        project_id: int,
        jira_ticket_id: str,
        title: str,
        description: str = "",
        scheduled_date: Optional[date] = None,
        deadline: Optional[date] = None,
        status: TaskStatus = TaskStatus.PENDING,
        jira_title: Optional[str] = None,
    ) -> Task:
        self.get_project(project_id)
        task = Task(
            project_id=project_id,
            jira_ticket_id=jira_ticket_id,
            jira_title=jira_title,
            title=title,
            description=description or "",
            scheduled_date=scheduled_date,
            deadline=deadline,
            status=TaskStatus(status or TaskStatus.PENDING),
        )
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    session.add(task)
        except IntegrityError as e:
            raise DuplicateRecord(
                f"ticket {jira_ticket_id} already has a task in project {project_id}"
            ) from e
        logger.info(f"Created task {task.id} for ticket {jira_ticket_id}")
        return task

    def create_task_with_jira_title(self, project_id: int, jira_ticket_id: str, title: str, **kwargs) -> Task:
        """Create a task, filling `jira_title` from the tracker when it answers."""
        kwargs["jira_title"] = self._fetch_jira_title(jira_ticket_id)
        return self.create_task(project_id, jira_ticket_id, title, **kwargs)

    def update_task(self, task_id: int, **fields) -> Task:
        if "status" in fields and fields["status"] is not None:
            fields["status"] = TaskStatus(fields["status"])
        return self._update(Task, task_id, TASK_FIELDS, fields, "task")

    def update_task_status(self, task_id: int, status) -> Task:
        return self.update_task(task_id, status=TaskStatus(status))

    def delete_task(self, task_id: int) -> None:
        with get_sync_session(self.engine) as session:
            with session.begin():
                result = session.execute(delete(Task).where(Task.id == task_id))
                if result.rowcount == 0:
                    raise RecordNotFound(f"task {task_id} not found")

    def tasks_in_date_range(self, start: date, end: date) -> List[Dict[str, Any]]:
        """Tasks scheduled or due within [start, end], with their project name."""
        in_range = or_(
            and_(Task.scheduled_date >= start, Task.scheduled_date <= end),
            and_(Task.deadline >= start, Task.deadline <= end),
        )
        stmt = (
            select(Task, Project.name)
            .join(Project, Task.project_id == Project.id)
            .where(in_range)
            .order_by(Task.deadline.is_(None), Task.deadline, Task.scheduled_date, Task.id)
        )
        with get_sync_session(self.engine) as session:
            rows = session.execute(stmt).all()
        return [{"task": task, "project_name": project_name} for task, project_name in rows]

    # ------------------------------------------------------------------
    # JIRA enrichment
    # ------------------------------------------------------------------

    def _fetch_jira_title(self, ticket_id: str) -> Optional[str]:
        if self.jira_client is None:
            logger.info(f"JIRA not configured, creating task for {ticket_id} without a title")
            return None
        try:
            return self.jira_client.get_issue(ticket_id).summary or None
        except JiraError as e:
            logger.warning(f"Failed to fetch JIRA title for {ticket_id}: {e}")
            return None

    def update_task_jira_title(self, task_id: int) -> Task:
        """Refresh one task's title. Raises JiraError when the tracker fails."""
        if self.jira_client is None:
            raise JiraError("JIRA client not configured")
        task = self.get_task(task_id)
        issue = self.jira_client.get_issue(task.jira_ticket_id)
        return self._update(Task, task_id, TASK_FIELDS, {"jira_title": issue.summary}, "task")

    def refresh_all_jira_titles(self) -> int:
        """Refresh every task's title; failures are logged and skipped. Returns the count updated."""
        if self.jira_client is None:
            raise JiraError("JIRA client not configured")
        updated = 0
        for task in self.list_tasks():
            try:
                self.update_task_jira_title(task.id)
                updated += 1
            except DashboardError as e:
                logger.warning(f"Failed to refresh JIRA title for task {task.id} ({task.jira_ticket_id}): {e}")
        logger.info(f"Refreshed {updated} JIRA titles")
        return updated

    # ------------------------------------------------------------------

    def _update(self, model, record_id: int, allowed, fields: Dict[str, Any], label: str):
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValueError(f"unknown {label} fields: {sorted(unknown)}")
        try:
            with get_sync_session(self.engine) as session:
                with session.begin():
                    record = session.get(model, record_id)
                    if record is None:
                        raise RecordNotFound(f"{label} {record_id} not found")
                    for key, value in fields.items():
                        setattr(record, key, value)
                    record.updated_at = utcnow()
                return record
        except IntegrityError as e:
            raise DuplicateRecord(f"{label} {record_id} conflicts with an existing record") from e
