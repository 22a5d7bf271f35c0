"""On-disk layout of generated sitemaps.

    {output_dir}/sitemap.xml              index
    {output_dir}/sitemaps/{type}-{n}.xml  page files
"""

import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from github_explorer.pipelines.sitemap.generator import SITEMAP_ENTITY_TYPES, count_urls

logger = logging.getLogger(__name__)

PAGE_FILE_RE = re.compile(r"^(?P<entity_type>[a-z_]+)-(?P<page>\d+)\.xml$")
INDEX_FILENAME = "sitemap.xml"


def page_filename(entity_type: str, page: int) -> str:
    return f"{entity_type}-{page}.xml"


def _mtime_iso(path: Path) -> str:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()


class SitemapStorage:
    """Reads and atomically writes sitemap files."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)
        self.sitemaps_dir = self.output_dir / "sitemaps"
        self.index_path = self.output_dir / INDEX_FILENAME

    def ensure_dir(self) -> None:
        self.sitemaps_dir.mkdir(parents=True, exist_ok=True)

    def _write_atomic(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def list_sitemap_files(self, entity_type: str) -> List[str]:
        """Page files of ``entity_type`` ordered by page number."""
        if not self.sitemaps_dir.exists():
            return []
        pages = []
        for path in self.sitemaps_dir.iterdir():
            match = PAGE_FILE_RE.match(path.name)
            if match and match.group("entity_type") == entity_type:
                pages.append((int(match.group("page")), path.name))
        return [name for _, name in sorted(pages)]

    def list_all_sitemap_files(self) -> List[str]:
        """Every page file, grouped by entity type in generation order."""
        files = []
        for entity_type in SITEMAP_ENTITY_TYPES:
            files.extend(self.list_sitemap_files(entity_type))
        return files

    def delete_sitemap_files(self, entity_type: str) -> int:
        removed = 0
        for name in self.list_sitemap_files(entity_type):
            (self.sitemaps_dir / name).unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info(f"Deleted {removed} {entity_type} sitemap files")
        return removed

    def write_page(self, entity_type: str, page: int, content: str) -> str:
        filename = page_filename(entity_type, page)
        self._write_atomic(self.sitemaps_dir / filename, content)
        logger.debug(f"Wrote sitemap page {filename}")
        return filename

    def read_sitemap_file(self, filename: str) -> str:
        if not PAGE_FILE_RE.match(filename):
            raise ValueError(f"Invalid sitemap filename: {filename}")
        return (self.sitemaps_dir / filename).read_text(encoding="utf-8")

    def write_index(self, content: str) -> None:
        self._write_atomic(self.index_path, content)

    def index_exists(self) -> bool:
        return self.index_path.exists()

    def read_index(self) -> Optional[str]:
        if not self.index_path.exists():
            return None
        return self.index_path.read_text(encoding="utf-8")

    def get_status(self) -> Dict[str, Any]:
        """Summary of what is currently published."""
        files = []
        for name in self.list_all_sitemap_files():
            path = self.sitemaps_dir / name
            try:
                url_count = count_urls(path.read_text(encoding="utf-8"))
            except Exception as e:
                logger.warning(f"Could not read sitemap file {name}: {e}")
                url_count = 0
            files.append(
                {
                    "filename": name,
                    "entity_type": PAGE_FILE_RE.match(name).group("entity_type"),
                    "url_count": url_count,
                    "last_updated": _mtime_iso(path),
                }
            )

        exists = self.index_exists()
        return {
            "sitemap_exists": exists,
            "last_updated": _mtime_iso(self.index_path) if exists else None,
            "file_count": len(files),
            "files": files,
        }
