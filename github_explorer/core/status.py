"""Pending-work counts per pipeline type and entity totals."""

from typing import Dict

from github_explorer.core.store import (
    COMMITS,
    CONTRIBUTOR_RANKINGS,
    CONTRIBUTORS,
    MERGE_REQUESTS,
    RAW_MERGE_REQUESTS,
    REPOSITORIES,
    EntityStore,
)
from github_explorer.pipelines.registry import PipelineType, UnknownPipelineError

ENRICHABLE_TYPES = [REPOSITORIES, CONTRIBUTORS, MERGE_REQUESTS]


class PipelineStatusService:
    def __init__(self, store: EntityStore):
        self.store = store

    async def item_count(self, pipeline_type: str) -> int:
        """Number of items the next run of ``pipeline_type`` would work on."""
        try:
            kind = PipelineType(pipeline_type)
        except ValueError:
            raise UnknownPipelineError(f"Unknown pipeline type: {pipeline_type}") from None

        if kind == PipelineType.GITHUB_SYNC:
            return await self.store.count(RAW_MERGE_REQUESTS)
        if kind == PipelineType.ENTITY_EXTRACTION:
            return await self.store.count(RAW_MERGE_REQUESTS, {"is_processed": False})
        if kind == PipelineType.DATA_ENRICHMENT:
            total = 0
            for entity_type in ENRICHABLE_TYPES:
                total += await self.store.count(entity_type, {"is_enriched": False})
            return total
        if kind == PipelineType.CONTRIBUTOR_RANKINGS:
            return await self.store.count(CONTRIBUTORS)
        total = 0
        for entity_type in ENRICHABLE_TYPES:
            total += await self.store.count(entity_type)
        return total

    async def entity_counts(self) -> Dict[str, int]:
        return {
            entity_type: await self.store.count(entity_type)
            for entity_type in (
                REPOSITORIES,
                CONTRIBUTORS,
                MERGE_REQUESTS,
                COMMITS,
                RAW_MERGE_REQUESTS,
                CONTRIBUTOR_RANKINGS,
            )
        }
