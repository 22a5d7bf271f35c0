"""GitHub sync pipeline: pull recently merged pull requests into raw storage."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from github_explorer.core.github_client import GitHubClient
from github_explorer.core.store import RAW_MERGE_REQUESTS, EntityStore
from github_explorer.pipelines.base import ExecutionContext, Stage


def _user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        "id": user.get("id"),
        "login": user.get("login"),
        "avatar_url": user.get("avatar_url"),
        "type": user.get("type"),
    }


def is_merged_pull_request_event(event: Dict[str, Any]) -> bool:
    """True for ``PullRequestEvent``s that closed a pull request by merging it."""
    if event.get("type") != "PullRequestEvent":
        return False
    payload = event.get("payload") or {}
    pull_request = payload.get("pull_request") or {}
    return payload.get("action") == "closed" and bool(
        pull_request.get("merged") or pull_request.get("merged_at")
    )


def build_raw_record(
    event: Dict[str, Any], commits: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Shape a merged pull request event into a raw merge request record."""
    pr = event["payload"]["pull_request"]
    base_repo = (pr.get("base") or {}).get("repo") or {}
    event_repo = event.get("repo") or {}
    full_name = base_repo.get("full_name") or event_repo.get("name")

    repository = {
        "id": base_repo.get("id") or event_repo.get("id"),
        "full_name": full_name,
        "owner": ((base_repo.get("owner") or {}).get("login"))
        or (full_name.split("/")[0] if full_name else None),
        "description": base_repo.get("description"),
        "url": base_repo.get("html_url") or (f"https://github.com/{full_name}" if full_name else None),
        "stars": base_repo.get("stargazers_count", 0),
        "forks": base_repo.get("forks_count", 0),
    }

    pull_request = {
        "id": pr["id"],
        "pr_number": pr.get("number"),
        "title": pr.get("title"),
        "body": pr.get("body"),
        "state": "merged",
        "created_at": pr.get("created_at"),
        "updated_at": pr.get("updated_at"),
        "closed_at": pr.get("closed_at"),
        "merged_at": pr.get("merged_at"),
        "user": _user(pr.get("user")),
        "merged_by": _user(pr.get("merged_by")),
        "review_comments": pr.get("review_comments", 0),
        "commits_count": pr.get("commits", 0),
        "additions": pr.get("additions", 0),
        "deletions": pr.get("deletions", 0),
        "changed_files": pr.get("changed_files", 0),
        "labels": [label.get("name") for label in pr.get("labels") or []],
        "base": (pr.get("base") or {}).get("ref"),
        "head": (pr.get("head") or {}).get("ref"),
    }

    return {
        "id": pr["id"],
        "repository": repository,
        "pull_request": pull_request,
        "commits": commits or [],
        "is_processed": False,
        "updated_at": pr.get("updated_at") or datetime.now(timezone.utc).isoformat(),
    }


def build_commit(commit: Dict[str, Any], detail: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    info = commit.get("commit") or {}
    stats = (detail or {}).get("stats") or {}
    return {
        "sha": commit.get("sha"),
        "message": info.get("message"),
        "author": _user(commit.get("author")),
        "committed_at": (info.get("author") or {}).get("date"),
        "additions": stats.get("additions", 0),
        "deletions": stats.get("deletions", 0),
    }


class GitHubSyncStage(Stage):
    """Fetch public events and store merged pull requests as raw records."""

    name = "github_sync"

    def __init__(
        self,
        store: EntityStore,
        github: GitHubClient,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.store = store
        self.github = github

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        max_requests = int(
            context.parameters.get("max_requests", self.setting(config, "max_requests", 10))
        )
        per_page = int(self.setting(config, "per_page", 100))
        fetch_commits = bool(self.setting(config, "fetch_commits", True))

        page = 1
        while context.request_budget_left(max_requests):
            context.requests_used += 1
            events = await self.github.list_public_events(page=page, per_page=per_page)
            if not events:
                break

            records = []
            for event in events:
                if not is_merged_pull_request_event(event):
                    continue
                commits: List[Dict[str, Any]] = []
                repo_name = ((event.get("repo") or {}).get("name")) or ""
                number = event["payload"]["pull_request"].get("number")
                if (
                    fetch_commits
                    and repo_name
                    and number
                    and context.request_budget_left(max_requests)
                ):
                    context.requests_used += 1
                    for commit in await self.github.list_pull_request_commits(repo_name, number):
                        detail = None
                        if context.request_budget_left(max_requests):
                            context.requests_used += 1
                            detail = await self.github.get_commit(repo_name, commit["sha"])
                        commits.append(build_commit(commit, detail))
                records.append(build_raw_record(event, commits))

            if records:
                await self.store.upsert(RAW_MERGE_REQUESTS, records, "id")
                context.items_processed += len(records)

            used = context.requests_used
            await context.update_status(
                used * 100 / max_requests,
                f"Synced {context.items_processed} merged pull requests ({used}/{max_requests} requests)",
            )
            page += 1

        context.logger.info(f"GitHub sync stored {context.items_processed} raw merge requests")
        return context
