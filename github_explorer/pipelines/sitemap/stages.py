"""Sitemap pipeline stages: EntityFetch -> SitemapGeneration -> SitemapIndex."""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from github_explorer.core.store import ENTITY_KEYS, SITEMAP_METADATA, EntityStore
from github_explorer.pipelines.base import ExecutionContext, Stage
from github_explorer.pipelines.sitemap.generator import (
    SITEMAP_ENTITY_TYPES,
    build_sitemap_index,
    build_url_entry,
    build_urlset,
)
from github_explorer.pipelines.sitemap.storage import SitemapStorage

SITEMAP_NAMESPACE = "sitemap"


async def load_metadata(store: EntityStore, entity_type: str) -> Dict[str, Any]:
    rows = await store.fetch_batch(SITEMAP_METADATA, 1, 0, {"entity_type": entity_type})
    if rows:
        return rows[0]
    return {"entity_type": entity_type, "current_page": 0, "url_count": 0, "last_updated": None}


class EntityFetchStage(Stage):
    """Seed the sitemap context with per-type counts and stored metadata."""

    name = "entity_fetch"

    def __init__(
        self,
        store: EntityStore,
        entity_types: Optional[List[str]] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.store = store
        self.entity_types = entity_types or list(SITEMAP_ENTITY_TYPES)

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        sitemap = context.namespace(SITEMAP_NAMESPACE)
        for entity_type in self.entity_types:
            metadata = await load_metadata(self.store, entity_type)
            total = await self.store.count(entity_type)
            if total == 0:
                context.logger.info(f"No {entity_type} found, skipping sitemap generation")
                continue
            sitemap[entity_type] = {
                "total_count": total,
                "metadata": metadata,
                "processed_count": 0,
                "urls": [],
            }
            context.logger.info(f"Found {total} {entity_type} for sitemap generation")
        await context.update_status(5, f"Fetched counts for {len(sitemap)} entity types")
        return context


class SitemapGenerationStage(Stage):
    """Write ``{type}-{page}.xml`` files, at most ``max_urls`` URLs each."""

    name = "sitemap_generation"

    def __init__(
        self,
        store: EntityStore,
        storage: SitemapStorage,
        base_url: str,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.store = store
        self.storage = storage
        self.base_url = base_url

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        max_urls = int(self.setting(config, "max_urls", 49000))
        batch_size = int(self.setting(config, "batch_size", 1000))
        sitemap = context.namespace(SITEMAP_NAMESPACE)
        if not sitemap:
            context.logger.info("Nothing to generate")
            return context

        self.storage.ensure_dir()
        for entity_type, entry in sitemap.items():
            total = entry["total_count"]
            metadata = entry["metadata"]
            self.storage.delete_sitemap_files(entity_type)

            # Page numbers keep increasing across runs so no file name is reused
            page = int(metadata.get("current_page") or 0) + 1
            last_page = page - 1
            buffer: List[Dict[str, str]] = []
            written_urls = 0
            offset = 0

            while True:
                batch = await self.store.fetch_batch(entity_type, batch_size, offset)
                if not batch:
                    break
                offset += len(batch)

                for entity in batch:
                    url = build_url_entry(entity_type, entity, self.base_url)
                    if url is None:
                        context.logger.warning(
                            f"Skipping {entity_type} entity without URL fields: "
                            f"{entity.get('github_id')}"
                        )
                        continue
                    buffer.append(url)
                    if len(buffer) >= max_urls:
                        self.storage.write_page(entity_type, page, build_urlset(buffer))
                        written_urls += len(buffer)
                        last_page = page
                        page += 1
                        buffer = []

                entry["processed_count"] += len(batch)
                await context.update_status(
                    math.floor(entry["processed_count"] / total * 100) if total else 100,
                    f"Generating {entity_type} sitemaps: {entry['processed_count']}/{total}",
                )

            if buffer:
                self.storage.write_page(entity_type, page, build_urlset(buffer))
                written_urls += len(buffer)
                last_page = page

            metadata = {
                "entity_type": entity_type,
                "current_page": last_page,
                "url_count": written_urls,
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }
            await self.store.upsert(SITEMAP_METADATA, [metadata], ENTITY_KEYS[SITEMAP_METADATA])
            entry["metadata"] = metadata
            entry["url_count"] = written_urls
            context.items_processed += written_urls
            context.logger.info(
                f"Completed sitemap generation for {entity_type}: {written_urls} URLs"
            )

        return context


class SitemapIndexStage(Stage):
    """Write ``sitemap.xml`` listing every page file present on disk."""

    name = "sitemap_index"

    def __init__(
        self,
        storage: SitemapStorage,
        base_url: str,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.storage = storage
        self.base_url = base_url

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        files = self.storage.list_all_sitemap_files()
        if not files:
            context.logger.info("No sitemap files found, skipping index generation")
            return context

        self.storage.write_index(build_sitemap_index(files, self.base_url))
        context.data["sitemap_index"] = {"files": files}
        context.logger.info(f"Generated sitemap index with {len(files)} files")
        return context
