"""Entity extraction pipeline: normalize raw merge requests into entities.

Raw records without a repository id or PR number are flagged
``extraction_failed`` and marked processed so they do not block the queue.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from github_explorer.core.store import (
    COMMITS,
    CONTRIBUTORS,
    ENTITY_KEYS,
    MERGE_REQUESTS,
    RAW_MERGE_REQUESTS,
    REPOSITORIES,
    EntityStore,
)
from github_explorer.pipelines.base import ExecutionContext, Stage


class MalformedRecordError(ValueError):
    """A raw merge request that cannot be turned into entities."""


class ExtractionBatch:
    """Entities derived from one batch of raw records, de-duplicated by natural key."""

    def __init__(self, timestamp: str):
        self.timestamp = timestamp
        self.repositories: Dict[Any, Dict[str, Any]] = {}
        self.contributors: Dict[Any, Dict[str, Any]] = {}
        self.merge_requests: Dict[Any, Dict[str, Any]] = {}
        self.commits: Dict[Any, Dict[str, Any]] = {}

    def add_contributor(self, user: Optional[Dict[str, Any]]) -> Optional[int]:
        if not user or user.get("id") is None:
            return None
        github_id = user["id"]
        contributor = self.contributors.setdefault(
            github_id, {"github_id": github_id, "updated_at": self.timestamp}
        )
        if user.get("login"):
            contributor["username"] = user["login"]
        if user.get("avatar_url"):
            contributor["avatar"] = user["avatar_url"]
        return github_id

    def add_raw(self, raw: Dict[str, Any]) -> None:
        repo = raw.get("repository") or {}
        pr = raw.get("pull_request") or {}
        if repo.get("id") is None or pr.get("pr_number") is None:
            raise MalformedRecordError(f"Raw merge request {raw.get('id')} lacks repository or PR number")

        repo_id = repo["id"]
        self.repositories[repo_id] = {
            "github_id": repo_id,
            "full_name": repo.get("full_name"),
            "name": (repo.get("full_name") or "").split("/")[-1] or None,
            "owner": repo.get("owner"),
            "description": repo.get("description"),
            "url": repo.get("url"),
            "stars": repo.get("stars") or 0,
            "forks": repo.get("forks") or 0,
            "updated_at": self.timestamp,
        }

        author_id = self.add_contributor(pr.get("user"))
        merged_by_id = self.add_contributor(pr.get("merged_by"))

        mr_key = (repo_id, pr["pr_number"])
        self.merge_requests[mr_key] = {
            "github_id": pr["pr_number"],
            "pull_request_id": pr.get("id"),
            "repository_github_id": repo_id,
            "repository_full_name": repo.get("full_name"),
            "title": pr.get("title"),
            "description": pr.get("body"),
            "state": pr.get("state") or "merged",
            "author_github_id": author_id,
            "merged_by_github_id": merged_by_id,
            "additions": pr.get("additions") or 0,
            "deletions": pr.get("deletions") or 0,
            "changed_files": pr.get("changed_files") or 0,
            "commits_count": pr.get("commits_count") or 0,
            "review_comments": pr.get("review_comments") or 0,
            "labels": pr.get("labels") or [],
            "source_branch": pr.get("head"),
            "target_branch": pr.get("base"),
            "created_at": pr.get("created_at"),
            "closed_at": pr.get("closed_at"),
            "merged_at": pr.get("merged_at"),
            "updated_at": self.timestamp,
        }

        for commit in raw.get("commits") or []:
            if not commit.get("sha"):
                continue
            contributor_id = self.add_contributor(commit.get("author"))
            self.commits[commit["sha"]] = {
                "sha": commit["sha"],
                "message": commit.get("message"),
                "contributor_github_id": contributor_id,
                "repository_github_id": repo_id,
                "pull_request_github_id": pr["pr_number"],
                "additions": commit.get("additions") or 0,
                "deletions": commit.get("deletions") or 0,
                "committed_at": commit.get("committed_at"),
                "updated_at": self.timestamp,
            }


class EntityExtractionStage(Stage):
    """Read unprocessed raw records and upsert repositories, contributors,
    merge requests and commits, then flag the raw records as processed."""

    name = "entity_extraction"

    def __init__(self, store: EntityStore, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.store = store

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        batch_size = int(self.setting(config, "batch_size", 100))
        max_batches = context.parameters.get("max_batches", self.setting(config, "max_batches"))
        pending = {"is_processed": False}

        total = await self.store.count(RAW_MERGE_REQUESTS, pending)
        if total == 0:
            await context.update_status(100, "No raw merge requests to extract")
            return context

        batches = 0
        processed = 0
        while max_batches is None or batches < int(max_batches):
            raw_batch = await self.store.fetch_batch(
                RAW_MERGE_REQUESTS, batch_size, 0, pending
            )
            if not raw_batch:
                break

            extracted = ExtractionBatch(datetime.now(timezone.utc).isoformat())
            failed = set()
            for raw in raw_batch:
                try:
                    extracted.add_raw(raw)
                except MalformedRecordError as e:
                    context.logger.warning(f"Skipping raw merge request: {e}")
                    failed.add(raw["id"])

            await self.store.upsert(
                REPOSITORIES, list(extracted.repositories.values()), ENTITY_KEYS[REPOSITORIES]
            )
            await self.store.upsert(
                CONTRIBUTORS, list(extracted.contributors.values()), ENTITY_KEYS[CONTRIBUTORS]
            )
            await self.store.upsert(
                MERGE_REQUESTS,
                list(extracted.merge_requests.values()),
                ENTITY_KEYS[MERGE_REQUESTS],
            )
            await self.store.upsert(COMMITS, list(extracted.commits.values()), ENTITY_KEYS[COMMITS])
            await self.store.upsert(
                RAW_MERGE_REQUESTS,
                [
                    {
                        "id": raw["id"],
                        "is_processed": True,
                        "extraction_failed": raw["id"] in failed,
                    }
                    for raw in raw_batch
                ],
                ENTITY_KEYS[RAW_MERGE_REQUESTS],
            )

            batches += 1
            processed += len(raw_batch)
            context.items_processed += len(raw_batch) - len(failed)
            await context.update_status(
                processed * 100 // max(total, 1),
                f"Extracted {processed}/{total} raw merge requests",
            )

        context.logger.info(f"Extracted entities from {processed} raw merge requests")
        return context
