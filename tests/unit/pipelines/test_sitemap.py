"""Tests for sitemap generation, storage and index building."""

from datetime import date

import pytest

from github_explorer.core.store import (
    CONTRIBUTORS,
    MERGE_REQUESTS,
    REPOSITORIES,
    SITEMAP_METADATA,
    InMemoryEntityStore,
)
from github_explorer.pipelines.base import ExecutionContext, Pipeline
from github_explorer.pipelines.sitemap.generator import (
    build_sitemap_index,
    build_url_entry,
    build_urlset,
    count_urls,
    format_entity_url,
    parse_sitemap_locs,
)
from github_explorer.pipelines.sitemap.stages import (
    EntityFetchStage,
    SitemapGenerationStage,
    SitemapIndexStage,
)
from github_explorer.pipelines.sitemap.storage import SitemapStorage

BASE_URL = "https://explorer.test"


def repositories(n):
    return [{"github_id": i, "full_name": f"org/repo-{i}"} for i in range(1, n + 1)]


class GeneratedRepositoryStore(InMemoryEntityStore):
    """Serves ``total`` synthetic repositories without materializing them."""

    def __init__(self, total):
        super().__init__()
        self.total = total

    async def count(self, entity_type, filter=None):
        if entity_type == REPOSITORIES:
            return self.total
        return await super().count(entity_type, filter)

    async def fetch_batch(self, entity_type, limit, offset=0, filter=None):
        if entity_type != REPOSITORIES:
            return await super().fetch_batch(entity_type, limit, offset, filter)
        end = min(offset + limit, self.total)
        return [{"github_id": i, "full_name": f"org/repo-{i}"} for i in range(offset, end)]


def sitemap_pipeline(store, storage, max_urls, batch_size=1000):
    return Pipeline(
        "sitemap_generation",
        [
            EntityFetchStage(store),
            SitemapGenerationStage(store, storage, BASE_URL),
            SitemapIndexStage(storage, BASE_URL),
        ],
        {"max_urls": max_urls, "batch_size": batch_size},
    )


class TestGenerator:
    def test_entity_urls(self):
        assert (
            format_entity_url(REPOSITORIES, {"full_name": "acme/widgets"}, BASE_URL + "/")
            == "https://explorer.test/repository/acme/widgets"
        )
        assert (
            format_entity_url(CONTRIBUTORS, {"username": "alice"}, BASE_URL)
            == "https://explorer.test/contributor/alice"
        )
        assert (
            format_entity_url(
                MERGE_REQUESTS, {"repository_full_name": "acme/widgets", "github_id": 3}, BASE_URL
            )
            == "https://explorer.test/repository/acme/widgets/pull/3"
        )
        assert format_entity_url(MERGE_REQUESTS, {"github_id": 3}, BASE_URL) is None

    def test_unsupported_type(self):
        with pytest.raises(ValueError):
            format_entity_url("commits", {"sha": "abc"}, BASE_URL)

    def test_url_entry_settings(self):
        entry = build_url_entry(
            REPOSITORIES,
            {"full_name": "acme/widgets", "updated_at": "2024-05-06T07:08:09Z"},
            BASE_URL,
        )
        assert entry["lastmod"] == "2024-05-06"
        assert entry["changefreq"] == "weekly"
        assert entry["priority"] == "0.8"

    def test_urlset_and_index_parse_back(self):
        urlset = build_urlset([{"loc": f"{BASE_URL}/a"}, {"loc": f"{BASE_URL}/b"}])
        assert urlset.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert count_urls(urlset) == 2

        index = build_sitemap_index(["repositories-1.xml"], BASE_URL, lastmod=date(2024, 1, 2))
        assert parse_sitemap_locs(index) == [
            f"{BASE_URL}/sitemaps/repositories-1.xml",
            f"{BASE_URL}/",
        ]
        assert "<lastmod>2024-01-02</lastmod>" in index


class TestSitemapPipeline:
    @pytest.mark.asyncio
    async def test_pages_are_split_at_max_urls(self, tmp_path):
        # 125 URLs at 49 per page -> 49/49/27
        store = InMemoryEntityStore({REPOSITORIES: repositories(125)})
        storage = SitemapStorage(tmp_path)

        context = await sitemap_pipeline(store, storage, max_urls=49, batch_size=20).run(
            ExecutionContext("sitemap_generation")
        )

        files = storage.list_sitemap_files(REPOSITORIES)
        assert files == ["repositories-1.xml", "repositories-2.xml", "repositories-3.xml"]
        assert [count_urls(storage.read_sitemap_file(f)) for f in files] == [49, 49, 27]
        assert context.items_processed == 125

        locs = parse_sitemap_locs(storage.read_index())
        assert len(locs) == 4
        assert locs[-1] == f"{BASE_URL}/"

        metadata = store.all(SITEMAP_METADATA)[0]
        assert metadata["current_page"] == 3
        assert metadata["url_count"] == 125

        published = set()
        for f in files:
            published.update(parse_sitemap_locs(storage.read_sitemap_file(f)))
        assert published == {f"{BASE_URL}/repository/org/repo-{i}" for i in range(1, 126)}

    @pytest.mark.asyncio
    async def test_full_scale_pagination(self, tmp_path):
        store = GeneratedRepositoryStore(125_000)
        storage = SitemapStorage(tmp_path)

        await sitemap_pipeline(store, storage, max_urls=49_000, batch_size=10_000).run(
            ExecutionContext("sitemap_generation")
        )

        files = storage.list_sitemap_files(REPOSITORIES)
        assert [count_urls(storage.read_sitemap_file(f)) for f in files] == [49_000, 49_000, 27_000]
        index_locs = parse_sitemap_locs(storage.read_index())
        assert index_locs == [f"{BASE_URL}/sitemaps/{f}" for f in files] + [f"{BASE_URL}/"]

    @pytest.mark.asyncio
    async def test_rerun_replaces_files_with_new_page_numbers(self, tmp_path):
        store = InMemoryEntityStore({REPOSITORIES: repositories(5)})
        storage = SitemapStorage(tmp_path)

        for _ in range(2):
            await sitemap_pipeline(store, storage, max_urls=3).run(
                ExecutionContext("sitemap_generation")
            )

        assert storage.list_sitemap_files(REPOSITORIES) == [
            "repositories-3.xml",
            "repositories-4.xml",
        ]

    @pytest.mark.asyncio
    async def test_types_without_entities_are_skipped(self, tmp_path):
        store = InMemoryEntityStore(
            {
                REPOSITORIES: repositories(2),
                CONTRIBUTORS: [{"github_id": 11, "username": "alice"}],
            }
        )
        storage = SitemapStorage(tmp_path)

        await sitemap_pipeline(store, storage, max_urls=10).run(
            ExecutionContext("sitemap_generation")
        )

        assert storage.list_all_sitemap_files() == ["repositories-1.xml", "contributors-1.xml"]

    @pytest.mark.asyncio
    async def test_empty_store_writes_no_index(self, tmp_path, entity_store):
        storage = SitemapStorage(tmp_path)
        await sitemap_pipeline(entity_store, storage, max_urls=10).run(
            ExecutionContext("sitemap_generation")
        )
        assert not storage.index_exists()


class TestSitemapStorage:
    def test_status_of_empty_dir(self, tmp_path):
        status = SitemapStorage(tmp_path / "missing").get_status()
        assert status == {
            "sitemap_exists": False,
            "last_updated": None,
            "file_count": 0,
            "files": [],
        }

    def test_status_lists_files(self, tmp_path):
        storage = SitemapStorage(tmp_path)
        storage.write_page(CONTRIBUTORS, 1, build_urlset([{"loc": f"{BASE_URL}/c/a"}]))
        storage.write_index(build_sitemap_index(["contributors-1.xml"], BASE_URL))

        status = storage.get_status()
        assert status["sitemap_exists"]
        assert status["file_count"] == 1
        assert status["files"][0]["entity_type"] == CONTRIBUTORS
        assert status["files"][0]["url_count"] == 1

    def test_rejects_path_traversal(self, tmp_path):
        with pytest.raises(ValueError):
            SitemapStorage(tmp_path).read_sitemap_file("../secret.xml")

    def test_page_files_sorted_numerically(self, tmp_path):
        storage = SitemapStorage(tmp_path)
        for page in (10, 2, 1):
            storage.write_page(REPOSITORIES, page, build_urlset([]))
        assert storage.list_sitemap_files(REPOSITORIES) == [
            "repositories-1.xml",
            "repositories-2.xml",
            "repositories-10.xml",
        ]
        assert storage.delete_sitemap_files(REPOSITORIES) == 3
