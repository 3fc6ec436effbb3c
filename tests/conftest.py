import pytest

from dev_dashboard.database import dispose_engine, init_db
from dev_dashboard.exceptions import GitHubAPIError
from dev_dashboard.models import RepositoryType
from dev_dashboard.outcome import Outcome
from dev_dashboard.store import RecordStore


@pytest.fixture
def db_engine(tmp_path):
    url = f"sqlite:///{tmp_path / 'test.db'}"
    engine = init_db(url)
    yield engine
    dispose_engine(url)


@pytest.fixture
def store(db_engine):
    return RecordStore(db_engine)


@pytest.fixture
def monorepo(store):
    return store.create_repository(
        name="platform",
        url="https://github.com/acme/platform",
        type=RepositoryType.MONOREPO,
    )


@pytest.fixture
def k8s_repo(store):
    return store.create_repository(
        name="deployments",
        url="https://github.com/acme/deployments",
        type=RepositoryType.KUBERNETES,
    )


class FakeGitHub:
    """In-memory stand-in for GitHubClient; records every call in `calls`."""

    def __init__(self):
        self.services = Outcome.not_applicable("services not found")
        self.manifest_paths = []
        self.files = {}
        self.resources = []
        self.workflows = []
        self.runs = {}
        self.commits = {}
        self.tags = []
        self.latest_shas = {}
        self.pull_requests = []
        self.pull_request_files = {}
        self.failures = {}
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def get_repository(self, owner, repo):
        self._record("get_repository", owner, repo)
        return {"full_name": f"{owner}/{repo}", "default_branch": "main"}

    def discover_services(self, owner, repo, base_path="services"):
        self._record("discover_services", owner, repo, base_path)
        return self.services

    def find_manifest_files(self, owner, repo, root_path="services"):
        self._record("find_manifest_files", owner, repo, root_path)
        return list(self.manifest_paths)

    def get_file_text(self, owner, repo, path):
        self._record("get_file_text", owner, repo, path)
        if path not in self.files:
            return Outcome.not_applicable(f"{path} not found")
        return Outcome.found(self.files[path])

    def discover_kubernetes_resources(self, owner, repo, root_path=""):
        self._record("discover_kubernetes_resources", owner, repo, root_path)
        return list(self.resources)

    def list_workflows(self, owner, repo):
        self._record("list_workflows", owner, repo)
        return list(self.workflows)

    def list_workflow_runs(self, owner, repo, workflow_id, limit=50):
        self._record("list_workflow_runs", owner, repo, workflow_id, limit)
        return list(self.runs.get(workflow_id, []))[:limit]

    def list_commits(self, owner, repo, path=None, per_page=50):
        self._record("list_commits", owner, repo, path, per_page)
        return list(self.commits.get(path, []))[:per_page]

    def latest_commit_sha(self, owner, repo, path):
        self._record("latest_commit_sha", owner, repo, path)
        return self.latest_shas.get(path, "")

    def list_tags(self, owner, repo, per_page=100):
        self._record("list_tags", owner, repo)
        return list(self.tags)

    def list_pull_requests(self, owner, repo, state="all", per_page=50):
        self._record("list_pull_requests", owner, repo)
        return list(self.pull_requests)

    def list_pull_request_files(self, owner, repo, number):
        self._record("list_pull_request_files", owner, repo, number)
        return list(self.pull_request_files.get(number, []))

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def remote_error():
    return GitHubAPIError("GitHub API error 502", status_code=502, url="/repos/acme/x")
