"""Typed registry mapping pipeline types to pipeline factories."""

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from github_explorer.core.config import Settings, settings
from github_explorer.core.github_client import GitHubClient
from github_explorer.core.store import EntityStore
from github_explorer.pipelines.base import Pipeline
from github_explorer.pipelines.enrichment import (
    ContributorEnrichmentStage,
    MergeRequestEnrichmentStage,
    RepositoryEnrichmentStage,
)
from github_explorer.pipelines.extraction import EntityExtractionStage
from github_explorer.pipelines.rankings import BotDetectionStage, ContributorRankingStage
from github_explorer.pipelines.sitemap.stages import (
    EntityFetchStage,
    SitemapGenerationStage,
    SitemapIndexStage,
)
from github_explorer.pipelines.sitemap.storage import SitemapStorage
from github_explorer.pipelines.sync import GitHubSyncStage

logger = logging.getLogger(__name__)


class PipelineType(str, Enum):
    GITHUB_SYNC = "github_sync"
    ENTITY_EXTRACTION = "entity_extraction"
    DATA_ENRICHMENT = "data_enrichment"
    CONTRIBUTOR_RANKINGS = "contributor_rankings"
    SITEMAP_GENERATION = "sitemap_generation"


class UnknownPipelineError(ValueError):
    """Raised for a pipeline type that is not registered."""


PipelineFactory = Callable[[], Pipeline]


class PipelineRegistry:
    """Builds a fresh ``Pipeline`` per run for each registered type."""

    def __init__(self):
        self._factories: Dict[str, PipelineFactory] = {}

    def register(self, pipeline_type: Union[str, PipelineType], factory: PipelineFactory) -> None:
        key = PipelineType(pipeline_type).value
        self._factories[key] = factory
        logger.debug(f"Registered pipeline {key}")

    def resolve(self, pipeline_type: Union[str, PipelineType]) -> str:
        value = pipeline_type.value if isinstance(pipeline_type, PipelineType) else pipeline_type
        if value not in self._factories:
            raise UnknownPipelineError(f"Unknown pipeline type: {value}")
        return value

    def build(self, pipeline_type: Union[str, PipelineType]) -> Pipeline:
        return self._factories[self.resolve(pipeline_type)]()

    def types(self) -> List[str]:
        return list(self._factories.keys())

    def __contains__(self, pipeline_type: object) -> bool:
        value = pipeline_type.value if isinstance(pipeline_type, PipelineType) else pipeline_type
        return value in self._factories


def create_default_registry(
    store: EntityStore,
    github: Optional[GitHubClient] = None,
    sitemap_storage: Optional[SitemapStorage] = None,
    config: Optional[Settings] = None,
) -> PipelineRegistry:
    """Register the five built-in pipelines against shared collaborators."""
    config = config or settings
    github = github or GitHubClient(config)
    sitemap_storage = sitemap_storage or SitemapStorage(config.sitemap_output_dir)
    max_batches = config.max_batches_per_run

    registry = PipelineRegistry()

    registry.register(
        PipelineType.GITHUB_SYNC,
        lambda: Pipeline(
            PipelineType.GITHUB_SYNC.value,
            [GitHubSyncStage(store, github)],
            {"per_page": config.sync_per_page, "max_requests": config.sync_max_requests},
        ),
    )
    registry.register(
        PipelineType.ENTITY_EXTRACTION,
        lambda: Pipeline(
            PipelineType.ENTITY_EXTRACTION.value,
            [EntityExtractionStage(store)],
            {"batch_size": config.extraction_batch_size, "max_batches": max_batches},
        ),
    )
    registry.register(
        PipelineType.DATA_ENRICHMENT,
        lambda: Pipeline(
            PipelineType.DATA_ENRICHMENT.value,
            [
                RepositoryEnrichmentStage(store, github),
                ContributorEnrichmentStage(store, github),
                MergeRequestEnrichmentStage(store, github),
            ],
            {
                "batch_size": config.enrichment_batch_size,
                "max_requests": config.enrichment_max_requests,
                "max_attempts": config.enrichment_max_attempts,
                "max_batches": max_batches,
            },
        ),
    )
    registry.register(
        PipelineType.CONTRIBUTOR_RANKINGS,
        lambda: Pipeline(
            PipelineType.CONTRIBUTOR_RANKINGS.value,
            [BotDetectionStage(store), ContributorRankingStage(store)],
            {"batch_size": config.rankings_batch_size},
        ),
    )
    registry.register(
        PipelineType.SITEMAP_GENERATION,
        lambda: Pipeline(
            PipelineType.SITEMAP_GENERATION.value,
            [
                EntityFetchStage(store),
                SitemapGenerationStage(store, sitemap_storage, config.base_url),
                SitemapIndexStage(sitemap_storage, config.base_url),
            ],
            {"max_urls": config.sitemap_max_urls, "batch_size": config.sitemap_batch_size},
        ),
    )
    return registry
