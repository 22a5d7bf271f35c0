"""Tests for the GitHub sync stage."""

import asyncio

import pytest

from github_explorer.core.store import RAW_MERGE_REQUESTS
from github_explorer.pipelines.base import ExecutionContext
from github_explorer.pipelines.sync import (
    GitHubSyncStage,
    build_raw_record,
    is_merged_pull_request_event,
)


def merged_event(number, repo="acme/widgets", merged=True, action="closed"):
    return {
        "type": "PullRequestEvent",
        "repo": {"id": 100, "name": repo},
        "payload": {
            "action": action,
            "pull_request": {
                "id": 5000 + number,
                "number": number,
                "title": f"PR {number}",
                "merged": merged,
                "merged_at": "2024-03-01T10:00:00Z" if merged else None,
                "updated_at": "2024-03-01T10:00:00Z",
                "user": {"id": 11, "login": "alice", "avatar_url": "https://a"},
                "base": {
                    "ref": "main",
                    "repo": {
                        "id": 100,
                        "full_name": repo,
                        "owner": {"login": repo.split("/")[0]},
                        "stargazers_count": 3,
                    },
                },
                "head": {"ref": f"feature-{number}"},
                "labels": [{"name": "bug"}],
            },
        },
    }


class TestEventFiltering:
    def test_only_merged_closes_count(self):
        assert is_merged_pull_request_event(merged_event(1))
        assert not is_merged_pull_request_event(merged_event(1, merged=False))
        assert not is_merged_pull_request_event(merged_event(1, action="opened"))
        assert not is_merged_pull_request_event({"type": "PushEvent", "payload": {}})

    def test_build_raw_record(self):
        record = build_raw_record(merged_event(7))

        assert record["id"] == 5007
        assert record["is_processed"] is False
        assert record["repository"]["full_name"] == "acme/widgets"
        assert record["repository"]["owner"] == "acme"
        assert record["pull_request"]["pr_number"] == 7
        assert record["pull_request"]["labels"] == ["bug"]
        assert record["pull_request"]["head"] == "feature-7"


class TestGitHubSyncStage:
    @pytest.mark.asyncio
    async def test_stores_merged_pull_requests(self, entity_store, fake_github_factory):
        github = fake_github_factory(
            events=[[merged_event(1), merged_event(2, merged=False), {"type": "WatchEvent"}]],
            commits={"acme/widgets#1": [{"sha": "abc", "commit": {"message": "m"}}]},
            commit_details={"abc": {"stats": {"additions": 3, "deletions": 1}}},
        )
        context = await GitHubSyncStage(entity_store, github).execute(
            ExecutionContext("github_sync"), {"max_requests": 10}
        )

        stored = entity_store.all(RAW_MERGE_REQUESTS)
        assert context.items_processed == 1
        assert [r["id"] for r in stored] == [5001]
        assert stored[0]["commits"][0]["additions"] == 3

    @pytest.mark.asyncio
    async def test_request_budget_is_respected(self, entity_store, fake_github_factory):
        github = fake_github_factory(
            events=[[merged_event(n)] for n in range(1, 20)],
        )
        await GitHubSyncStage(entity_store, github, {"fetch_commits": False}).execute(
            ExecutionContext("github_sync", parameters={"max_requests": 3}), {}
        )

        assert github.requests_made == 3
        assert len(entity_store.all(RAW_MERGE_REQUESTS)) == 3

    @pytest.mark.asyncio
    async def test_empty_page_ends_sync(self, entity_store, fake_github_factory):
        github = fake_github_factory(events=[])
        context = await GitHubSyncStage(entity_store, github).execute(
            ExecutionContext("github_sync"), {"max_requests": 10}
        )

        assert github.requests_made == 1
        assert context.items_processed == 0

    @pytest.mark.asyncio
    async def test_budget_ignores_calls_from_other_runs(self, entity_store, fake_github_factory):
        class YieldingGitHub(fake_github_factory):
            async def list_public_events(self, page=1, per_page=100):
                await asyncio.sleep(0)
                return await super().list_public_events(page, per_page)

            async def get_repository(self, full_name):
                await asyncio.sleep(0)
                return await super().get_repository(full_name)

        github = YieldingGitHub(events=[[merged_event(n)] for n in range(1, 20)])

        async def other_run():
            for _ in range(10):
                await github.get_repository("acme/widgets")

        context = ExecutionContext("github_sync", parameters={"max_requests": 10})
        await asyncio.gather(
            GitHubSyncStage(entity_store, github, {"fetch_commits": False}).execute(context, {}),
            other_run(),
        )

        assert context.requests_used == 10
        assert len(entity_store.all(RAW_MERGE_REQUESTS)) == 10
        assert github.requests_made == 20
