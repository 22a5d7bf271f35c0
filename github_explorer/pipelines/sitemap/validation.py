"""HEAD-check every URL published in the sitemap."""

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

import httpx

from github_explorer.pipelines.sitemap.generator import parse_sitemap_locs
from github_explorer.pipelines.sitemap.storage import SitemapStorage

logger = logging.getLogger(__name__)

VALIDATION_BATCH_SIZE = 25
MAX_REPORTED_FAILURES = 50


def collect_sitemap_urls(storage: SitemapStorage, base_url: str) -> List[str]:
    """Resolve the index into the page URLs it lists."""
    index = storage.read_index()
    if index is None:
        raise FileNotFoundError("sitemap.xml has not been generated")

    prefix = f"{base_url.rstrip('/')}/sitemaps/"
    urls: List[str] = []
    for loc in parse_sitemap_locs(index):
        if not loc.startswith(prefix):
            urls.append(loc)
            continue
        filename = loc[len(prefix) :]
        try:
            urls.extend(parse_sitemap_locs(storage.read_sitemap_file(filename)))
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable sitemap file {filename}: {e}")
    return urls


async def _check(client: httpx.AsyncClient, url: str) -> Dict[str, Any]:
    try:
        response = await client.head(url)
        return {"url": url, "status": response.status_code, "ok": response.status_code < 400}
    except httpx.HTTPError as e:
        return {"url": url, "status": None, "ok": False, "error": str(e)}


async def validate_sitemap_urls(
    storage: SitemapStorage,
    base_url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Check each URL with a HEAD request, in batches of 25.

    Returns:
        ``{total, successful, failed, by_status_code, failed_urls}``; at most
        50 failures are listed.
    """
    urls = collect_sitemap_urls(storage, base_url)
    results: List[Dict[str, Any]] = []

    async with httpx.AsyncClient(
        timeout=timeout, follow_redirects=True, transport=transport
    ) as client:
        for start in range(0, len(urls), VALIDATION_BATCH_SIZE):
            batch = urls[start : start + VALIDATION_BATCH_SIZE]
            results.extend(await asyncio.gather(*[_check(client, url) for url in batch]))

    failures = [r for r in results if not r["ok"]]
    by_status = Counter(str(r["status"]) if r["status"] is not None else "error" for r in results)
    summary = {
        "total": len(results),
        "successful": len(results) - len(failures),
        "failed": len(failures),
        "by_status_code": dict(by_status),
        "failed_urls": failures[:MAX_REPORTED_FAILURES],
    }
    logger.info(
        f"Validated {summary['total']} sitemap URLs: {summary['failed']} failed"
    )
    return summary
