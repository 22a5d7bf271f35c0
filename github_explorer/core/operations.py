"""Manual trigger surface: start, stop and restart pipelines.

``start`` opens a ``running`` history record and hands the run to a dispatcher
(the Docket worker queue in production). ``stop`` cannot interrupt a pipeline
that is already executing; it finalizes the running records as failed, and a
worker that has not picked the run up yet will skip it.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel

from github_explorer.core.history import RunTrigger
from github_explorer.pipelines.registry import UnknownPipelineError

logger = logging.getLogger(__name__)

MANUAL_STOP_MESSAGE = "Pipeline was manually stopped by user"


class PipelineAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"


class OperationResult(BaseModel):
    success: bool
    action: PipelineAction
    pipeline_type: str
    history_id: Optional[str] = None
    stopped_runs: List[str] = []
    message: str


class PipelineDispatcher(Protocol):
    async def dispatch(
        self, pipeline_type: str, history_id: str, parameters: Dict[str, Any]
    ) -> Optional[str]:
        """Queue a run; returns a task id when the backend provides one."""
        ...


class PipelineOperations:
    def __init__(self, history, dispatcher: PipelineDispatcher, pipeline_types: Iterable[str]):
        self.history = history
        self.dispatcher = dispatcher
        self.pipeline_types = set(pipeline_types)

    def _check_type(self, pipeline_type: str) -> None:
        if pipeline_type not in self.pipeline_types:
            raise UnknownPipelineError(f"Unknown pipeline type: {pipeline_type}")

    async def start(
        self, pipeline_type: str, parameters: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        self._check_type(pipeline_type)
        run = await self.history.start(
            pipeline_type, trigger=RunTrigger.MANUAL, parameters=parameters
        )
        try:
            await self.dispatcher.dispatch(pipeline_type, run.id, parameters or {})
        except Exception as e:
            logger.error(f"Failed to dispatch {pipeline_type} run {run.id}: {e}")
            await self.history.fail(run.id, f"Failed to dispatch pipeline: {e}")
            return OperationResult(
                success=False,
                action=PipelineAction.START,
                pipeline_type=pipeline_type,
                history_id=run.id,
                message=f"Failed to start {pipeline_type}: {e}",
            )

        logger.info(f"Dispatched {pipeline_type} run {run.id}")
        return OperationResult(
            success=True,
            action=PipelineAction.START,
            pipeline_type=pipeline_type,
            history_id=run.id,
            message=f"{pipeline_type} pipeline started",
        )

    async def stop(self, pipeline_type: str) -> OperationResult:
        self._check_type(pipeline_type)
        stopped = []
        for run in await self.history.find_running(pipeline_type):
            if await self.history.fail(run.id, MANUAL_STOP_MESSAGE):
                stopped.append(run.id)

        message = (
            f"Stopped {len(stopped)} running {pipeline_type} run(s)"
            if stopped
            else f"No running {pipeline_type} runs"
        )
        logger.info(message)
        return OperationResult(
            success=True,
            action=PipelineAction.STOP,
            pipeline_type=pipeline_type,
            stopped_runs=stopped,
            message=message,
        )

    async def restart(
        self, pipeline_type: str, parameters: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        stopped = await self.stop(pipeline_type)
        started = await self.start(pipeline_type, parameters)
        return started.model_copy(
            update={
                "action": PipelineAction.RESTART,
                "stopped_runs": stopped.stopped_runs,
                "message": f"{pipeline_type} pipeline restarted"
                if started.success
                else started.message,
            }
        )

    async def execute(
        self, action: str, pipeline_type: str, parameters: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        """Dispatch by action name (used by the HTTP and CLI surfaces)."""
        action = PipelineAction(action)
        if action == PipelineAction.START:
            return await self.start(pipeline_type, parameters)
        if action == PipelineAction.STOP:
            return await self.stop(pipeline_type)
        return await self.restart(pipeline_type, parameters)
