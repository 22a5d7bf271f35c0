"""Docket task definitions for pipeline execution."""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from docket import ConcurrencyLimit, Docket, Perpetual
from ulid import ULID

from github_explorer.core.config import settings
from github_explorer.core.history import PipelineHistoryStore, RunStatus
from github_explorer.core.redis import get_redis_client, get_redis_url

logger = logging.getLogger(__name__)

# Pipeline task registry
PIPELINE_TASK_COLLECTION = []


def pipeline_task(func):
    """Decorator to register pipeline tasks."""
    PIPELINE_TASK_COLLECTION.append(func)
    return func


@pipeline_task
async def run_pipeline_task(
    pipeline_type: str,
    history_id: str,
    parameters: Optional[Dict[str, Any]] = None,
    concurrency: ConcurrencyLimit = ConcurrencyLimit(
        "pipeline_type", max_concurrent=1, scope="pipeline_runs"
    ),
) -> Dict[str, Any]:
    """
    Execute a pipeline run that was opened by ``PipelineOperations.start``.

    Only one run per pipeline type executes at a time. A run whose history
    record is no longer ``running`` (stopped before pickup) is skipped.
    """
    from github_explorer.core.runtime import build_orchestrator

    redis_client = get_redis_client()
    history = PipelineHistoryStore(redis_client)
    try:
        run = await history.get(history_id)
        if run is None or run.status != RunStatus.RUNNING:
            logger.info(f"Skipping {pipeline_type} run {history_id}: no longer running")
            return {"task_id": str(ULID()), "history_id": history_id, "skipped": True}

        orchestrator, github = build_orchestrator(redis_client, history=history)
        try:
            result = await orchestrator.run_pipeline(
                pipeline_type, parameters=parameters, history_id=history_id
            )
        finally:
            await github.aclose()
        result["task_id"] = str(ULID())
        return result
    finally:
        await redis_client.aclose()


@pipeline_task
async def sweep_stale_runs_task(
    perpetual: Perpetual = Perpetual(
        every=timedelta(seconds=settings.history_sweep_interval), automatic=True
    ),
    concurrency: ConcurrencyLimit = ConcurrencyLimit(max_concurrent=1),
) -> Dict[str, Any]:
    """Fail ``running`` history records older than the configured threshold."""
    redis_client = get_redis_client()
    try:
        swept = await PipelineHistoryStore(redis_client).sweep_stale(
            settings.history_stale_after_seconds
        )
        return {"task_id": str(ULID()), "swept": swept}
    except Exception as e:
        logger.error(f"Stale run sweep failed: {e}")
        raise
    finally:
        await redis_client.aclose()


class DocketDispatcher:
    """Queues pipeline runs on the Docket worker queue."""

    def __init__(self, url: Optional[str] = None, name: Optional[str] = None):
        self.url = url or get_redis_url()
        self.name = name or settings.task_queue_name

    async def dispatch(
        self, pipeline_type: str, history_id: str, parameters: Dict[str, Any]
    ) -> Optional[str]:
        async with Docket(url=self.url, name=self.name) as docket:
            task_func = docket.add(run_pipeline_task, key=f"pipeline_{history_id}")
            execution = await task_func(
                pipeline_type=pipeline_type, history_id=history_id, parameters=parameters
            )
        logger.info(f"Queued {pipeline_type} run {history_id}")
        return getattr(execution, "key", None)


async def register_pipeline_tasks() -> None:
    """Register all pipeline tasks with Docket."""
    try:
        async with Docket(url=get_redis_url(), name=settings.task_queue_name) as docket:
            for task in PIPELINE_TASK_COLLECTION:
                docket.register(task)
            logger.info(f"Registered {len(PIPELINE_TASK_COLLECTION)} pipeline tasks with Docket")
    except Exception as e:
        logger.error(f"Failed to register pipeline tasks: {e}")
        raise
