"""Sitemap CLI commands."""

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.table import Table

from github_explorer.core.config import settings
from github_explorer.pipelines.sitemap.storage import SitemapStorage
from github_explorer.pipelines.sitemap.validation import validate_sitemap_urls


def _storage(output_dir: str) -> SitemapStorage:
    return SitemapStorage(output_dir)


@click.group()
def sitemap():
    """Sitemap inspection commands."""
    pass


@sitemap.command()
@click.option("--output-dir", default=settings.sitemap_output_dir, help="Sitemap directory")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def status(output_dir: str, as_json: bool):
    """Show generated sitemap files and their URL counts."""
    info = _storage(output_dir).get_status()
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return
    if not info["sitemap_exists"]:
        click.echo("No sitemap index found.")
    else:
        click.echo(f"Sitemap index last updated: {info['last_updated']}")
    if not info["files"]:
        return

    table = Table(title=f"Sitemap files ({info['file_count']})")
    table.add_column("File")
    table.add_column("Entity type")
    table.add_column("URLs", justify="right")
    table.add_column("Last updated")
    for f in info["files"]:
        table.add_row(f["filename"], f["entity_type"], str(f["url_count"]), f["last_updated"])
    Console().print(table)


@sitemap.command()
@click.option("--output-dir", default=settings.sitemap_output_dir, help="Sitemap directory")
@click.option("--base-url", default=settings.base_url, help="Public base URL of the site")
@click.option("--timeout", default=10.0, help="Per-URL timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def validate(output_dir: str, base_url: str, timeout: float, as_json: bool):
    """HEAD-check every URL listed in the sitemap."""
    try:
        report = asyncio.run(
            validate_sitemap_urls(_storage(output_dir), base_url, timeout=timeout)
        )
    except FileNotFoundError:
        click.echo("❌ No sitemap generated yet")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return
    click.echo(f"Checked {report['total']} URLs: {report['successful']} ok, {report['failed']} failed")
    if report["failed_urls"]:
        table = Table(title="Failed URLs")
        table.add_column("URL")
        table.add_column("Status", justify="right")
        table.add_column("Error")
        for item in report["failed_urls"]:
            table.add_row(item["url"], str(item.get("status") or "-"), item.get("error") or "")
        Console().print(table)
    if report["failed"]:
        sys.exit(1)
