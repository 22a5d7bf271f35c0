"""Schedule CLI commands."""

import asyncio
import json
import sys
from datetime import datetime
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from github_explorer.cli.pipeline import PIPELINE_TYPES, parse_params
from github_explorer.core.events import EventBus
from github_explorer.core.scheduler import InvalidScheduleError, PipelineScheduler
from github_explorer.core.schedules import RedisScheduleStore, resolve_timezone


def _store() -> RedisScheduleStore:
    return RedisScheduleStore()


def _fmt(ts: Optional[str], tz: Optional[str]) -> str:
    if not ts:
        return "-"
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return ts
    dt = dt.astimezone(resolve_timezone(tz)) if tz else dt.astimezone()
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


@click.group()
def schedule():
    """Schedule management commands."""
    pass


@schedule.command("list")
@click.option("--type", "pipeline_type", type=click.Choice(PIPELINE_TYPES), help="Filter by type")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.option("--tz", required=False, help="IANA timezone for display. Defaults to local time")
def schedules_list(pipeline_type: Optional[str], as_json: bool, tz: Optional[str]):
    """List schedules."""

    async def _list():
        schedules = await _store().list()
        if pipeline_type:
            schedules = [s for s in schedules if s.pipeline_type == pipeline_type]
        return schedules

    try:
        items = asyncio.run(_list())
    except Exception as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}))
        else:
            click.echo(f"❌ Error: {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([s.model_dump(mode="json") for s in items], indent=2))
        return
    if not items:
        click.echo("No schedules found.")
        return

    table = Table(title="Schedules")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Pipeline")
    table.add_column("Cron", no_wrap=True)
    table.add_column("Active", no_wrap=True)
    table.add_column("Next Run", no_wrap=True)
    table.add_column("Last Run", no_wrap=True)
    for s in items:
        table.add_row(
            s.id,
            s.name,
            s.pipeline_type,
            f"{s.cron_expression} ({s.timezone})",
            "yes" if s.is_active else "no",
            _fmt(s.next_run_at, tz),
            _fmt(s.last_run_at, tz),
        )
    Console().print(table)


@schedule.command("get")
@click.argument("schedule_id")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def schedules_get(schedule_id: str, as_json: bool):
    """Get a single schedule by ID."""
    s = asyncio.run(_store().get(schedule_id))
    if s is None:
        if as_json:
            click.echo(json.dumps({"error": "Schedule not found", "id": schedule_id}))
        else:
            click.echo("❌ Schedule not found")
        sys.exit(1)

    if as_json:
        click.echo(s.model_dump_json(indent=2))
        return

    table = Table(title=f"Schedule {s.id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Name", s.name)
    table.add_row("Description", s.description or "-")
    table.add_row("Pipeline", s.pipeline_type)
    table.add_row("Cron", s.cron_expression)
    table.add_row("Timezone", s.timezone)
    table.add_row("Parameters", json.dumps(s.parameters))
    table.add_row("Active", "yes" if s.is_active else "no")
    table.add_row("Next Run", s.next_run_at or "-")
    table.add_row("Last Run", s.last_run_at or "-")
    if s.last_result:
        outcome = "success" if s.last_result.success else s.last_result.error or "failed"
        table.add_row("Last Result", outcome)
    Console().print(table)


@schedule.command("create")
@click.option("--name", required=True, help="Schedule name")
@click.option("--pipeline", "pipeline_type", required=True, type=click.Choice(PIPELINE_TYPES))
@click.option("--cron", "cron_expression", required=True, help="Five-field cron expression")
@click.option("--timezone", "tz", default="UTC", show_default=True, help="IANA timezone")
@click.option("--description", help="Schedule description")
@click.option("--param", "-p", "params", multiple=True, help="Pipeline parameter key=value")
@click.option("--inactive", is_flag=True, help="Create the schedule disabled")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def schedules_create(
    name: str,
    pipeline_type: str,
    cron_expression: str,
    tz: str,
    description: Optional[str],
    params: Tuple[str, ...],
    inactive: bool,
    as_json: bool,
):
    """Create a new schedule."""
    parameters = parse_params(params)

    async def _create():
        scheduler = PipelineScheduler(None, _store(), EventBus(), PIPELINE_TYPES)
        return await scheduler.create_schedule(
            name=name,
            pipeline_type=pipeline_type,
            cron_expression=cron_expression,
            timezone=tz,
            parameters=parameters,
            is_active=not inactive,
            description=description,
        )

    try:
        created = asyncio.run(_create())
    except InvalidScheduleError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}))
        else:
            click.echo(f"❌ {e}")
        sys.exit(1)

    if as_json:
        click.echo(created.model_dump_json(indent=2))
    else:
        click.echo(f"✅ Created schedule {created.id}")
        click.echo(f"   Next run: {_fmt(created.next_run_at, tz)}")


@schedule.command("delete")
@click.argument("schedule_id")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def schedules_delete(schedule_id: str, yes: bool, as_json: bool):
    """Delete a schedule by ID."""
    if not yes and not as_json:
        click.confirm(f"Delete schedule {schedule_id}?", abort=True)

    deleted = asyncio.run(_store().delete(schedule_id))
    if as_json:
        click.echo(json.dumps({"id": schedule_id, "deleted": deleted}))
    elif deleted:
        click.echo(f"✅ Deleted schedule {schedule_id}")
    else:
        click.echo(f"❌ Schedule {schedule_id} not found")
    if not deleted:
        sys.exit(1)
