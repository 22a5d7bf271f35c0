"""Tests for pending-work counts."""

import pytest

from github_explorer.core.status import PipelineStatusService
from github_explorer.core.store import InMemoryEntityStore
from github_explorer.pipelines.registry import UnknownPipelineError


@pytest.fixture
def service():
    store = InMemoryEntityStore(
        {
            "raw_merge_requests": [{"id": 1, "is_processed": True}, {"id": 2}, {"id": 3}],
            "repositories": [{"github_id": 1, "is_enriched": True}, {"github_id": 2}],
            "contributors": [{"github_id": 1}, {"github_id": 2}, {"github_id": 3}],
            "merge_requests": [{"repository_github_id": 1, "github_id": 1}],
        }
    )
    return PipelineStatusService(store)


class TestPipelineStatusService:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "pipeline_type,expected",
        [
            ("github_sync", 3),
            ("entity_extraction", 2),
            ("data_enrichment", 5),
            ("contributor_rankings", 3),
            ("sitemap_generation", 6),
        ],
    )
    async def test_item_count(self, service, pipeline_type, expected):
        assert await service.item_count(pipeline_type) == expected

    @pytest.mark.asyncio
    async def test_unknown_type(self, service):
        with pytest.raises(UnknownPipelineError):
            await service.item_count("nope")

    @pytest.mark.asyncio
    async def test_entity_counts(self, service):
        counts = await service.entity_counts()
        assert counts["raw_merge_requests"] == 3
        assert counts["commits"] == 0
