from datetime import date
from unittest.mock import MagicMock

import pytest

from dev_dashboard.exceptions import DuplicateRecord, JiraError, RecordNotFound
from dev_dashboard.jira import JiraIssue
from dev_dashboard.models import TaskStatus
from dev_dashboard.planner import Planner


@pytest.fixture
def jira():
    client = MagicMock()
    client.get_issue.side_effect = lambda key: JiraIssue(key=key, summary=f"Summary of {key}")
    return client


@pytest.fixture
def planner(db_engine, jira):
    return Planner(db_engine, jira)


@pytest.fixture
def project(planner):
    return planner.create_project("Checkout", "Q3 work")


class TestProjects:
    def test_crud(self, planner, project):
        assert [p.name for p in planner.list_projects()] == ["Checkout"]
        planner.update_project(project.id, description="Q4 work")
        assert planner.get_project(project.id).description == "Q4 work"
        planner.delete_project(project.id)
        with pytest.raises(RecordNotFound):
            planner.get_project(project.id)

    def test_duplicate_name(self, planner, project):
        with pytest.raises(DuplicateRecord):
            planner.create_project("Checkout")

    def test_delete_cascades_to_tasks(self, planner, project):
        task = planner.create_task(project.id, "OPS-1", "Login")
        planner.delete_project(project.id)
        with pytest.raises(RecordNotFound):
            planner.get_task(task.id)


class TestTasks:
    def test_create_defaults_to_pending(self, planner, project):
        task = planner.create_task(project.id, "OPS-1", "Login")
        assert planner.get_task(task.id).status is TaskStatus.PENDING

    def test_unknown_project(self, planner):
        with pytest.raises(RecordNotFound):
            planner.create_task(999, "OPS-1", "Login")

    def test_duplicate_ticket_in_project(self, planner, project):
        planner.create_task(project.id, "OPS-1", "Login")
        with pytest.raises(DuplicateRecord):
            planner.create_task(project.id, "OPS-1", "Login again")

    def test_status_update(self, planner, project):
        task = planner.create_task(project.id, "OPS-1", "Login")
        planner.update_task_status(task.id, "in_progress")
        assert planner.get_task(task.id).status is TaskStatus.IN_PROGRESS
        with pytest.raises(ValueError):
            planner.update_task_status(task.id, "blocked")

    def test_ordering_puts_unscheduled_last(self, planner, project):
        planner.create_task(project.id, "OPS-1", "Later", scheduled_date=date(2024, 6, 2))
        planner.create_task(project.id, "OPS-2", "Unscheduled")
        planner.create_task(project.id, "OPS-3", "Sooner", scheduled_date=date(2024, 6, 1))
        assert [t.title for t in planner.list_tasks(project.id)] == ["Sooner", "Later", "Unscheduled"]

    def test_date_range(self, planner, project):
        planner.create_task(project.id, "OPS-1", "Due inside", deadline=date(2024, 6, 10))
        planner.create_task(project.id, "OPS-2", "Scheduled inside", scheduled_date=date(2024, 6, 1))
        planner.create_task(project.id, "OPS-3", "Outside", deadline=date(2024, 7, 1))
        rows = planner.tasks_in_date_range(date(2024, 6, 1), date(2024, 6, 30))
        assert sorted(r["task"].title for r in rows) == ["Due inside", "Scheduled inside"]
        assert {r["project_name"] for r in rows} == {"Checkout"}

    def test_delete(self, planner, project):
        task = planner.create_task(project.id, "OPS-1", "Login")
        planner.delete_task(task.id)
        with pytest.raises(RecordNotFound):
            planner.delete_task(task.id)


class TestJiraTitles:
    def test_create_with_title(self, planner, project):
        task = planner.create_task_with_jira_title(project.id, "OPS-7", "Login")
        assert planner.get_task(task.id).jira_title == "Summary of OPS-7"

    def test_tracker_failure_still_creates_task(self, planner, project, jira):
        jira.get_issue.side_effect = JiraError("down")
        task = planner.create_task_with_jira_title(project.id, "OPS-7", "Login")
        assert planner.get_task(task.id).jira_title is None

    def test_without_tracker(self, db_engine, project):
        planner = Planner(db_engine, None)
        task = planner.create_task_with_jira_title(project.id, "OPS-7", "Login")
        assert task.jira_title is None
        with pytest.raises(JiraError):
            planner.refresh_all_jira_titles()

    def test_refresh_all_skips_failures(self, planner, project, jira):
        planner.create_task(project.id, "OPS-1", "One")
        planner.create_task(project.id, "OPS-2", "Two")

        def get_issue(key):
            if key == "OPS-2":
                raise JiraError("not found")
            return JiraIssue(key=key, summary="Fresh")

        jira.get_issue.side_effect = get_issue
        assert planner.refresh_all_jira_titles() == 1
        titles = {t.jira_ticket_id: t.jira_title for t in planner.list_tasks(project.id)}
        assert titles == {"OPS-1": "Fresh", "OPS-2": None}
