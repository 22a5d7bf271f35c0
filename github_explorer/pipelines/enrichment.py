"""Data enrichment pipeline: fill in entity details from the GitHub API.

Each stage reads entities with ``is_enriched`` unset in batches. A batch is
transformed entirely in memory and written with a single ``upsert``, so an
error part way through a batch leaves that batch untouched while earlier
batches stay committed.

All three stages charge their GitHub calls to the run's
``ExecutionContext.requests_used``, so ``max_requests`` bounds the whole run.
"""

from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from github_explorer.core.github_client import GitHubClient
from github_explorer.core.store import (
    CONTRIBUTORS,
    ENTITY_KEYS,
    MERGE_REQUESTS,
    REPOSITORIES,
    EntityStore,
)
from github_explorer.pipelines.base import ExecutionContext, Stage


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EnrichmentStage(Stage):
    """Batch-and-cursor enrichment of one entity type."""

    entity_type: str = ""

    def __init__(
        self,
        store: EntityStore,
        github: GitHubClient,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.store = store
        self.github = github

    @abstractmethod
    async def fetch(
        self, context: ExecutionContext, entity: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Fetch the GitHub payload for ``entity`` (``None`` when not found)."""
        pass

    async def call_github(self, context: ExecutionContext, method, *args) -> Any:
        """Invoke a ``GitHubClient`` method, charging it to the run's request budget."""
        context.requests_used += 1
        return await method(*args)

    @abstractmethod
    def transform(self, entity: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        """Map a GitHub payload onto the stored entity fields."""
        pass

    def describe(self, entity: Dict[str, Any]) -> str:
        return str(entity.get("github_id"))

    def not_found(self, entity: Dict[str, Any], max_attempts: int) -> Dict[str, Any]:
        attempts = int(entity.get("enrichment_attempts") or 0) + 1
        update = {**self._key_fields(entity), "enrichment_attempts": attempts}
        if attempts >= max_attempts:
            update.update(
                {"is_enriched": True, "enrichment_failed": True, "updated_at": _now()}
            )
            self.logger.warning(
                f"Giving up on {self.entity_type} {self.describe(entity)} after {attempts} attempts"
            )
        return update

    def _key_fields(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        key = ENTITY_KEYS[self.entity_type]
        fields = [key] if isinstance(key, str) else list(key)
        return {field: entity[field] for field in fields}

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        batch_size = int(self.setting(config, "batch_size", 20))
        max_requests = int(
            context.parameters.get("max_requests", self.setting(config, "max_requests", 1000))
        )
        max_attempts = int(self.setting(config, "max_attempts", 3))
        max_batches = context.parameters.get("max_batches", self.setting(config, "max_batches"))
        pending_filter = {"is_enriched": False}

        total = await self.store.count(self.entity_type, pending_filter)
        if total == 0:
            context.logger.info(f"No {self.entity_type} pending enrichment")
            return context

        offset = 0
        batches = 0
        enriched = 0
        budget_exhausted = False

        while not budget_exhausted and (max_batches is None or batches < int(max_batches)):
            batch = await self.store.fetch_batch(self.entity_type, batch_size, offset, pending_filter)
            if not batch:
                break

            updates = []
            still_pending = 0
            for entity in batch:
                if not context.request_budget_left(max_requests):
                    budget_exhausted = True
                    break
                payload = await self.fetch(context, entity)
                if payload is None:
                    update = self.not_found(entity, max_attempts)
                    if not update.get("is_enriched"):
                        still_pending += 1
                else:
                    update = {
                        **self._key_fields(entity),
                        **self.transform(entity, payload),
                        "is_enriched": True,
                        "enrichment_failed": False,
                        "updated_at": _now(),
                    }
                updates.append(update)

            if updates:
                await self.store.upsert(self.entity_type, updates, ENTITY_KEYS[self.entity_type])
                context.items_processed += len(updates)
                enriched += len(updates) - still_pending

            # Entities that stay pending keep their position ahead of the cursor
            offset += still_pending
            batches += 1
            await context.update_status(
                enriched * 100 // total,
                f"Enriched {enriched}/{total} {self.entity_type}",
            )

        if budget_exhausted:
            context.logger.info(
                f"Request budget of {max_requests} reached while enriching {self.entity_type}"
            )
        return context


class RepositoryEnrichmentStage(EnrichmentStage):
    name = "repository_enrichment"
    entity_type = REPOSITORIES

    def describe(self, entity: Dict[str, Any]) -> str:
        return entity.get("full_name") or str(entity.get("github_id"))

    async def fetch(
        self, context: ExecutionContext, entity: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if not entity.get("full_name"):
            return None
        return await self.call_github(context, self.github.get_repository, entity["full_name"])

    def transform(self, entity: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "name": payload.get("name"),
            "full_name": payload.get("full_name") or entity.get("full_name"),
            "owner": (payload.get("owner") or {}).get("login") or entity.get("owner"),
            "description": payload.get("description"),
            "url": payload.get("html_url"),
            "api_url": payload.get("url"),
            "stars": payload.get("stargazers_count", 0),
            "forks": payload.get("forks_count", 0),
            "open_issues_count": payload.get("open_issues_count", 0),
            "watchers_count": payload.get("watchers_count", 0),
            "size_kb": payload.get("size", 0),
            "primary_language": payload.get("language"),
            "license": (payload.get("license") or {}).get("spdx_id"),
            "is_fork": bool(payload.get("fork")),
            "is_archived": bool(payload.get("archived")),
            "default_branch": payload.get("default_branch"),
            "last_updated": payload.get("updated_at"),
        }


class ContributorEnrichmentStage(EnrichmentStage):
    name = "contributor_enrichment"
    entity_type = CONTRIBUTORS

    def describe(self, entity: Dict[str, Any]) -> str:
        return entity.get("username") or str(entity.get("github_id"))

    async def fetch(
        self, context: ExecutionContext, entity: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if not entity.get("username"):
            return None
        return await self.call_github(context, self.github.get_user, entity["username"])

    def transform(self, entity: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        languages = payload.get("languages")
        if isinstance(languages, dict):
            languages = list(languages.keys())
        return {
            "username": payload.get("login") or entity.get("username"),
            "name": payload.get("name"),
            "avatar": payload.get("avatar_url") or entity.get("avatar"),
            "bio": payload.get("bio"),
            "company": payload.get("company"),
            "blog": payload.get("blog"),
            "twitter_username": payload.get("twitter_username"),
            "location": payload.get("location"),
            "followers": payload.get("followers", 0),
            "repositories": payload.get("public_repos", 0),
            "top_languages": languages or entity.get("top_languages") or [],
            "organizations": payload.get("organizations") or entity.get("organizations") or [],
        }


class MergeRequestEnrichmentStage(EnrichmentStage):
    name = "merge_request_enrichment"
    entity_type = MERGE_REQUESTS

    def describe(self, entity: Dict[str, Any]) -> str:
        return f"{entity.get('repository_full_name')}#{entity.get('github_id')}"

    async def fetch(
        self, context: ExecutionContext, entity: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if not entity.get("repository_full_name"):
            return None
        return await self.call_github(
            context,
            self.github.get_pull_request,
            entity["repository_full_name"],
            int(entity["github_id"]),
        )

    def transform(self, entity: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "title": payload.get("title") or entity.get("title"),
            "description": payload.get("body"),
            "state": "merged" if payload.get("merged_at") else payload.get("state"),
            "additions": payload.get("additions", 0),
            "deletions": payload.get("deletions", 0),
            "changed_files": payload.get("changed_files", 0),
            "commits_count": payload.get("commits", 0),
            "review_comments": payload.get("review_comments", 0),
            "merged_at": payload.get("merged_at"),
            "closed_at": payload.get("closed_at"),
        }
