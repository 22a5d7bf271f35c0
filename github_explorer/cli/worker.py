"""Top-level `worker` CLI command."""

import asyncio
import logging
import sys
from datetime import timedelta

import click
from docket import Worker

from github_explorer.core.config import settings
from github_explorer.core.docket_tasks import register_pipeline_tasks
from github_explorer.core.redis import create_indices, get_redis_url


@click.command()
@click.option(
    "--concurrency",
    "-c",
    default=settings.worker_concurrency,
    show_default=True,
    help="Number of concurrent pipeline tasks",
)
def worker(concurrency: int):
    """Start the background worker that executes queued pipeline runs."""

    async def _worker():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )
        logger = logging.getLogger(__name__)

        if not settings.redis_url or not settings.redis_url.get_secret_value():
            click.echo("❌ Redis URL not configured")
            sys.exit(1)

        logger.info("Starting pipeline worker connected to Redis")

        if await create_indices():
            logger.info("Redis indices initialized")
        else:
            logger.warning("Failed to create some Redis indices")

        try:
            await register_pipeline_tasks()
            click.echo("✅ Pipeline tasks registered with Docket")

            click.echo("✅ Worker started, waiting for pipeline runs... Press Ctrl+C to stop")
            await Worker.run(
                docket_name=settings.task_queue_name,
                url=get_redis_url(),
                concurrency=concurrency,
                redelivery_timeout=timedelta(seconds=settings.task_timeout),
                tasks=["github_explorer.core.docket_tasks:PIPELINE_TASK_COLLECTION"],
            )
        except Exception as e:
            logger.error(f"❌ Worker error: {e}")
            raise

    try:
        asyncio.run(_worker())
    except KeyboardInterrupt:
        click.echo("\nPipeline worker stopped by user")
