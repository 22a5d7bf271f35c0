"""CLI commands for running and managing data pipelines."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from github_explorer.core.config import settings
from github_explorer.core.history import PipelineHistoryStore
from github_explorer.core.operations import PipelineOperations
from github_explorer.core.progress import create_reporter
from github_explorer.core.redis import get_redis_client
from github_explorer.core.status import PipelineStatusService
from github_explorer.core.store import RedisEntityStore
from github_explorer.pipelines.registry import PipelineType, UnknownPipelineError

PIPELINE_TYPES = [t.value for t in PipelineType]


def parse_params(params: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into a dict; values are parsed as JSON when possible."""
    parsed: Dict[str, Any] = {}
    for item in params:
        if "=" not in item:
            raise click.BadParameter(f"Expected key=value, got '{item}'", param_hint="--param")
        key, value = item.split("=", 1)
        try:
            parsed[key] = json.loads(value)
        except json.JSONDecodeError:
            parsed[key] = value
    return parsed


def _history() -> PipelineHistoryStore:
    return PipelineHistoryStore(get_redis_client())


def _operations() -> PipelineOperations:
    from github_explorer.core.docket_tasks import DocketDispatcher

    return PipelineOperations(_history(), DocketDispatcher(), PIPELINE_TYPES)


@click.group()
def pipeline():
    """Data pipeline commands: run, queue and inspect pipeline runs."""
    pass


@pipeline.command()
@click.argument("pipeline_type", type=click.Choice(PIPELINE_TYPES))
@click.option("--param", "-p", "params", multiple=True, help="Pipeline parameter key=value")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def run(pipeline_type: str, params: Tuple[str, ...], as_json: bool):
    """Run a pipeline in this process with live progress."""
    parameters = parse_params(params)

    async def _run():
        from github_explorer.core.runtime import build_orchestrator

        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )
        orchestrator, github = build_orchestrator(
            reporter_factory=lambda _t: create_reporter(cli=not as_json, log=False)
        )
        try:
            return await orchestrator.run_pipeline(pipeline_type, parameters=parameters)
        finally:
            await github.aclose()

    try:
        result = asyncio.run(_run())
    except Exception as e:
        if as_json:
            click.echo(json.dumps({"success": False, "error": str(e)}))
        else:
            click.echo(f"❌ {pipeline_type} failed: {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result, indent=2, default=str))
        return
    click.echo(f"✅ {pipeline_type} completed")
    click.echo(f"   Run: {result['history_id']}")
    click.echo(f"   Items processed: {result['items_processed']}")


def _action(action: str, pipeline_type: str, parameters: Optional[Dict[str, Any]], as_json: bool):
    async def _execute():
        return await _operations().execute(action, pipeline_type, parameters)

    try:
        result = asyncio.run(_execute())
    except UnknownPipelineError as e:
        raise click.BadParameter(str(e), param_hint="PIPELINE_TYPE")

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif result.success:
        click.echo(f"✅ {result.message}")
        if result.history_id:
            click.echo(f"   Run: {result.history_id}")
    else:
        click.echo(f"❌ {result.message}")
    if not result.success:
        sys.exit(1)


@pipeline.command()
@click.argument("pipeline_type", type=click.Choice(PIPELINE_TYPES))
@click.option("--param", "-p", "params", multiple=True, help="Pipeline parameter key=value")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def start(pipeline_type: str, params: Tuple[str, ...], as_json: bool):
    """Queue a pipeline run on the worker."""
    _action("start", pipeline_type, parse_params(params), as_json)


@pipeline.command()
@click.argument("pipeline_type", type=click.Choice(PIPELINE_TYPES))
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def stop(pipeline_type: str, as_json: bool):
    """Mark running runs of a pipeline as stopped."""
    _action("stop", pipeline_type, None, as_json)


@pipeline.command()
@click.argument("pipeline_type", type=click.Choice(PIPELINE_TYPES))
@click.option("--param", "-p", "params", multiple=True, help="Pipeline parameter key=value")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def restart(pipeline_type: str, params: Tuple[str, ...], as_json: bool):
    """Stop running runs of a pipeline and queue a new one."""
    _action("restart", pipeline_type, parse_params(params), as_json)


@pipeline.command()
@click.option("--type", "pipeline_type", type=click.Choice(PIPELINE_TYPES), help="Filter by type")
@click.option("--limit", "-l", default=20, help="Number of runs to show")
@click.option("--offset", default=0, help="Number of runs to skip")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def history(pipeline_type: Optional[str], limit: int, offset: int, as_json: bool):
    """Show pipeline run history, newest first."""

    async def _list():
        return await _history().list_runs(pipeline_type, limit=limit, offset=offset)

    runs, total = asyncio.run(_list())
    if as_json:
        click.echo(
            json.dumps({"data": [r.to_response() for r in runs], "count": total}, indent=2)
        )
        return
    if not runs:
        click.echo("No pipeline runs found.")
        return

    table = Table(title=f"Pipeline runs ({len(runs)} of {total})")
    table.add_column("ID", no_wrap=True)
    table.add_column("Pipeline")
    table.add_column("Status", no_wrap=True)
    table.add_column("Trigger", no_wrap=True)
    table.add_column("Started", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Error")
    for r in runs:
        duration = r.duration_seconds()
        table.add_row(
            r.id,
            r.pipeline_type,
            r.status.value,
            r.trigger.value,
            r.started_at,
            f"{duration:.1f}s" if duration is not None else "-",
            str(r.items_processed),
            r.error_message or "",
        )
    Console().print(table)


@pipeline.command()
@click.option("--stale", is_flag=True, help="Fail stale running records instead of deleting")
@click.option("--type", "pipeline_type", type=click.Choice(PIPELINE_TYPES), help="Filter by type")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def cleanup(stale: bool, pipeline_type: Optional[str], as_json: bool):
    """Delete finished runs from history, or fail stale running ones."""

    async def _cleanup():
        store = _history()
        if stale:
            return {"marked_failed": await store.sweep_stale(settings.history_stale_after_seconds)}
        return {"deleted": await store.clear(pipeline_type)}

    result = asyncio.run(_cleanup())
    if as_json:
        click.echo(json.dumps(result))
    elif stale:
        click.echo(f"✅ Marked {result['marked_failed']} stale runs as failed")
    else:
        click.echo(f"✅ Deleted {result['deleted']} finished runs")


@pipeline.command("item-count")
@click.argument("pipeline_type", required=False, type=click.Choice(PIPELINE_TYPES))
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def item_count(pipeline_type: Optional[str], as_json: bool):
    """Show how many items each pipeline would process next."""

    async def _count():
        service = PipelineStatusService(RedisEntityStore(get_redis_client()))
        types = [pipeline_type] if pipeline_type else PIPELINE_TYPES
        return {t: await service.item_count(t) for t in types}

    counts = asyncio.run(_count())
    if as_json:
        click.echo(json.dumps(counts))
        return
    table = Table(title="Pending items")
    table.add_column("Pipeline")
    table.add_column("Items", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    Console().print(table)
