"""
Test configuration and fixtures for GitHub Explorer pipelines.
"""

import os
from typing import Any, Dict, List, Optional

import pytest

# Test environment variables - only set if not already present
test_env = {
    "APP_NAME": "GitHub Explorer Test",
    "DEBUG": "true",
    "BASE_URL": "https://explorer.test",
    "RETRY_INITIAL_DELAY_MS": "1",
    "RETRY_MAX_DELAY_MS": "5",
}

# Set default REDIS_URL for unit tests
if not os.environ.get("REDIS_URL"):
    test_env["REDIS_URL"] = "redis://localhost:6379/0"

for key, value in test_env.items():
    os.environ.setdefault(key, value)


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless INTEGRATION_TESTS is set."""
    if os.environ.get("INTEGRATION_TESTS"):
        return
    skip_integration = pytest.mark.skip(reason="Set INTEGRATION_TESTS=1 to run integration tests")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeGitHub:
    """Stand-in for ``GitHubClient`` that serves canned payloads.

    Each lookup counts as one request. Missing keys behave like a 404.
    """

    def __init__(
        self,
        repositories: Optional[Dict[str, Dict[str, Any]]] = None,
        users: Optional[Dict[str, Dict[str, Any]]] = None,
        pull_requests: Optional[Dict[str, Dict[str, Any]]] = None,
        events: Optional[List[List[Dict[str, Any]]]] = None,
        commits: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        commit_details: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.repositories = repositories or {}
        self.users = users or {}
        self.pull_requests = pull_requests or {}
        self.events = events or []
        self.commits = commits or {}
        self.commit_details = commit_details or {}
        self.requests_made = 0
        self.fail_on: Dict[str, Exception] = {}
        self.closed = False

    def _hit(self, key: str):
        self.requests_made += 1
        if key in self.fail_on:
            raise self.fail_on[key]

    async def get_repository(self, full_name: str):
        self._hit(full_name)
        return self.repositories.get(full_name)

    async def get_user(self, login: str):
        self._hit(login)
        return self.users.get(login)

    async def get_pull_request(self, full_name: str, number: int):
        key = f"{full_name}#{number}"
        self._hit(key)
        return self.pull_requests.get(key)

    async def list_pull_request_commits(self, full_name: str, number: int):
        key = f"{full_name}#{number}"
        self._hit(key)
        return self.commits.get(key, [])

    async def get_commit(self, full_name: str, sha: str):
        self._hit(sha)
        return self.commit_details.get(sha)

    async def list_public_events(self, page: int = 1, per_page: int = 100):
        self._hit(f"events:{page}")
        if page - 1 < len(self.events):
            return self.events[page - 1]
        return []

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_github_factory():
    return FakeGitHub


@pytest.fixture
def entity_store():
    from github_explorer.core.store import InMemoryEntityStore

    return InMemoryEntityStore()


@pytest.fixture
def history_store():
    from github_explorer.core.history import InMemoryHistoryStore

    return InMemoryHistoryStore()


@pytest.fixture
def test_settings(tmp_path):
    from github_explorer.core.config import Settings

    return Settings(
        base_url="https://explorer.test",
        sitemap_output_dir=str(tmp_path / "public"),
        sitemap_max_urls=10,
        sitemap_batch_size=4,
        extraction_batch_size=2,
        enrichment_batch_size=3,
        scheduler_poll_interval=0.05,
    )


class RecordingDispatcher:
    """Dispatcher that records queued runs instead of talking to Docket."""

    def __init__(self, error: Optional[Exception] = None):
        self.dispatched: List[Dict[str, Any]] = []
        self.error = error

    async def dispatch(self, pipeline_type, history_id, parameters):
        if self.error:
            raise self.error
        self.dispatched.append(
            {"pipeline_type": pipeline_type, "history_id": history_id, "parameters": parameters}
        )
        return f"task-{history_id}"


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_runtime(test_settings, entity_store, history_store, dispatcher, fake_github_factory):
    """Build a ``PipelineRuntime`` wired entirely to in-memory collaborators."""

    def _make(github=None):
        from github_explorer.core.events import EventBus
        from github_explorer.core.notifications import NotificationService
        from github_explorer.core.operations import PipelineOperations
        from github_explorer.core.progress import NullReporter
        from github_explorer.core.runtime import PipelineRuntime
        from github_explorer.core.scheduler import PipelineScheduler
        from github_explorer.core.schedules import InMemoryScheduleStore
        from github_explorer.core.status import PipelineStatusService
        from github_explorer.pipelines.orchestrator import PipelineOrchestrator
        from github_explorer.pipelines.registry import create_default_registry
        from github_explorer.pipelines.sitemap.storage import SitemapStorage

        github = github or fake_github_factory()
        sitemap_storage = SitemapStorage(test_settings.sitemap_output_dir)
        registry = create_default_registry(
            entity_store, github=github, sitemap_storage=sitemap_storage, config=test_settings
        )
        orchestrator = PipelineOrchestrator(
            registry, history_store, reporter_factory=lambda _t: NullReporter()
        )
        events = EventBus()
        scheduler = PipelineScheduler(
            orchestrator,
            InMemoryScheduleStore(),
            events,
            registry.types(),
            poll_interval=test_settings.scheduler_poll_interval,
        )
        return PipelineRuntime(
            config=test_settings,
            store=entity_store,
            history=history_store,
            orchestrator=orchestrator,
            events=events,
            notifications=NotificationService(capacity=test_settings.notification_capacity),
            scheduler=scheduler,
            operations=PipelineOperations(history_store, dispatcher, registry.types()),
            status=PipelineStatusService(entity_store),
            sitemap_storage=sitemap_storage,
            github=github,
        )

    return _make


@pytest.fixture
def sample_raw_records() -> List[Dict[str, Any]]:
    """Two raw merge requests in one repository sharing an author."""
    author = {"id": 11, "login": "alice", "avatar_url": "https://avatars/alice"}
    reviewer = {"id": 12, "login": "bob", "avatar_url": None}
    repository = {
        "id": 100,
        "full_name": "acme/widgets",
        "owner": "acme",
        "description": "Widgets",
        "url": "https://github.com/acme/widgets",
        "stars": 42,
        "forks": 7,
    }
    return [
        {
            "id": 9001,
            "repository": repository,
            "pull_request": {
                "id": 9001,
                "pr_number": 1,
                "title": "Add widget",
                "body": "Adds a widget",
                "state": "merged",
                "user": author,
                "merged_by": reviewer,
                "additions": 10,
                "deletions": 2,
                "merged_at": "2024-01-01T00:00:00+00:00",
            },
            "commits": [
                {
                    "sha": "aaa",
                    "message": "widget",
                    "author": author,
                    "additions": 10,
                    "deletions": 2,
                }
            ],
            "is_processed": False,
            "updated_at": "2024-01-01T00:00:00+00:00",
        },
        {
            "id": 9002,
            "repository": repository,
            "pull_request": {
                "id": 9002,
                "pr_number": 2,
                "title": "Fix widget",
                "user": author,
                "merged_by": None,
                "additions": 1,
                "deletions": 1,
            },
            "commits": [
                {"sha": "bbb", "message": "fix", "author": reviewer, "additions": 1, "deletions": 1}
            ],
            "is_processed": False,
            "updated_at": "2024-01-02T00:00:00+00:00",
        },
    ]
