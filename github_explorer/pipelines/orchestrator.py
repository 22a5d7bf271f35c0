"""Pipeline orchestrator: runs a pipeline and keeps its history record in step."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from github_explorer.core.history import PipelineRun, RunTrigger
from github_explorer.core.progress import LoggingReporter, StatusReporter
from github_explorer.pipelines.base import ExecutionContext
from github_explorer.pipelines.registry import PipelineRegistry

logger = logging.getLogger(__name__)

ReporterFactory = Callable[[str], StatusReporter]


class PipelineOrchestrator:
    """Runs registered pipelines and records every run in the history store.

    ``history`` is any store exposing ``start``/``get``/``complete``/``fail``
    (``PipelineHistoryStore`` or ``InMemoryHistoryStore``).
    """

    def __init__(
        self,
        registry: PipelineRegistry,
        history,
        reporter_factory: Optional[ReporterFactory] = None,
    ):
        self.registry = registry
        self.history = history
        self.reporter_factory = reporter_factory or (lambda _pipeline_type: LoggingReporter())

    async def run_pipeline(
        self,
        pipeline_type: str,
        parameters: Optional[Dict[str, Any]] = None,
        history_id: Optional[str] = None,
        trigger: RunTrigger = RunTrigger.MANUAL,
        schedule_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run ``pipeline_type`` to completion.

        When ``history_id`` is given the existing record is used, otherwise a
        new one is opened. The record is completed or failed before returning;
        pipeline errors are re-raised after the record is failed.
        """
        pipeline_type = self.registry.resolve(pipeline_type)
        pipeline = self.registry.build(pipeline_type)

        run: Optional[PipelineRun] = None
        if history_id:
            run = await self.history.get(history_id)
        if run is None:
            run = await self.history.start(
                pipeline_type, trigger=trigger, schedule_id=schedule_id, parameters=parameters
            )

        context = ExecutionContext(
            pipeline_type=pipeline_type,
            run_id=run.id,
            parameters=parameters,
            reporter=self.reporter_factory(pipeline_type),
        )

        results: Dict[str, Any] = {
            "pipeline_type": pipeline_type,
            "history_id": run.id,
            "started_at": datetime.now(timezone.utc).isoformat(),
            "success": False,
        }
        logger.info(f"Starting pipeline {pipeline_type} (run {run.id})")

        try:
            await pipeline.run(context)
        except Exception as e:
            logger.error(f"Pipeline {pipeline_type} failed: {e}")
            await self.history.fail(run.id, str(e), items_processed=context.items_processed)
            results["error"] = str(e)
            results["items_processed"] = context.items_processed
            results["completed_at"] = datetime.now(timezone.utc).isoformat()
            raise

        await self.history.complete(run.id, items_processed=context.items_processed)
        results.update(
            {
                "success": True,
                "items_processed": context.items_processed,
                "status": context.status,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        logger.info(
            f"Pipeline {pipeline_type} completed: {context.items_processed} items processed"
        )
        return results
