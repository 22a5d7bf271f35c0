"""Sitemap XML generation and parsing."""

import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from github_explorer.core.store import CONTRIBUTORS, MERGE_REQUESTS, REPOSITORIES

logger = logging.getLogger(__name__)

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
NAMESPACES = {"sm": SITEMAP_NS}

# Entity types published in sitemaps, in generation order
SITEMAP_ENTITY_TYPES = [REPOSITORIES, CONTRIBUTORS, MERGE_REQUESTS]

# changefreq / priority per entity type
URL_SETTINGS = {
    REPOSITORIES: ("weekly", "0.8"),
    CONTRIBUTORS: ("weekly", "0.7"),
    MERGE_REQUESTS: ("monthly", "0.6"),
}


def _lastmod(entity: Dict[str, Any]) -> str:
    value = entity.get("updated_at")
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
        except ValueError:
            pass
    return datetime.now(timezone.utc).date().isoformat()


def format_entity_url(entity_type: str, entity: Dict[str, Any], base_url: str) -> Optional[str]:
    """Public URL of ``entity``, or ``None`` if it lacks the fields the URL needs."""
    base = base_url.rstrip("/")
    if entity_type == REPOSITORIES:
        full_name = entity.get("full_name")
        return f"{base}/repository/{quote(full_name, safe='/')}" if full_name else None
    if entity_type == CONTRIBUTORS:
        slug = entity.get("username") or entity.get("github_id")
        return f"{base}/contributor/{quote(str(slug), safe='')}" if slug else None
    if entity_type == MERGE_REQUESTS:
        full_name = entity.get("repository_full_name")
        number = entity.get("github_id")
        if not full_name or number is None:
            return None
        return f"{base}/repository/{quote(full_name, safe='/')}/pull/{number}"
    raise ValueError(f"Unsupported sitemap entity type: {entity_type}")


def build_url_entry(
    entity_type: str, entity: Dict[str, Any], base_url: str
) -> Optional[Dict[str, str]]:
    loc = format_entity_url(entity_type, entity, base_url)
    if loc is None:
        return None
    changefreq, priority = URL_SETTINGS[entity_type]
    return {"loc": loc, "lastmod": _lastmod(entity), "changefreq": changefreq, "priority": priority}


def _serialize(root: ET.Element) -> str:
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def build_urlset(urls: Iterable[Dict[str, str]]) -> str:
    """Render a sitemap page (``<urlset>``)."""
    root = ET.Element("urlset", {"xmlns": SITEMAP_NS})
    for url in urls:
        node = ET.SubElement(root, "url")
        for field in ("loc", "lastmod", "changefreq", "priority"):
            if url.get(field):
                ET.SubElement(node, field).text = url[field]
    return _serialize(root)


def build_sitemap_index(
    filenames: Iterable[str], base_url: str, lastmod: Optional[date] = None
) -> str:
    """Render ``sitemap.xml`` pointing at every page file plus the site root."""
    base = base_url.rstrip("/")
    today = (lastmod or datetime.now(timezone.utc).date()).isoformat()
    root = ET.Element("sitemapindex", {"xmlns": SITEMAP_NS})
    for filename in filenames:
        node = ET.SubElement(root, "sitemap")
        ET.SubElement(node, "loc").text = f"{base}/sitemaps/{filename}"
        ET.SubElement(node, "lastmod").text = today
    node = ET.SubElement(root, "sitemap")
    ET.SubElement(node, "loc").text = f"{base}/"
    ET.SubElement(node, "lastmod").text = today
    return _serialize(root)


def parse_sitemap_locs(xml_text: str) -> List[str]:
    """Return every ``<loc>`` from a urlset or sitemap index document."""
    root = ET.fromstring(xml_text.encode("utf-8"))
    locs = []
    for loc in root.findall(".//sm:loc", NAMESPACES):
        if loc.text and loc.text.strip():
            locs.append(loc.text.strip())
    return locs


def count_urls(xml_text: str) -> int:
    root = ET.fromstring(xml_text.encode("utf-8"))
    return len(root.findall("sm:url", NAMESPACES))
