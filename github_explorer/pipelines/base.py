"""Staged pipeline framework.

A ``Pipeline`` is an ordered list of ``Stage`` objects. Running it threads a
single ``ExecutionContext`` through every stage in registration order; the first
stage that raises aborts the run with a ``StageError``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ulid import ULID

from github_explorer.core.progress import NullReporter, StatusReporter

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """Invalid use of a pipeline definition."""


class StageError(RuntimeError):
    """A stage failed; the run was aborted at this stage."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause


class ExecutionContext:
    """Mutable state owned by exactly one pipeline run.

    Attributes:
        run_id: History id of the run
        pipeline_type: Pipeline being executed
        parameters: Caller supplied parameters (e.g. from a schedule)
        logger: Logger scoped to the pipeline type
        data: Namespaced scratch space shared between stages
        status: Latest ``progress`` (0..100) and ``message``
        items_processed: Number of items committed by the stages so far
        requests_used: GitHub calls made by this run, shared by all its stages
    """

    def __init__(
        self,
        pipeline_type: str,
        run_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        reporter: Optional[StatusReporter] = None,
    ):
        self.run_id = run_id or str(ULID())
        self.pipeline_type = pipeline_type
        self.parameters: Dict[str, Any] = dict(parameters or {})
        self.logger = logging.getLogger(f"github_explorer.pipeline.{pipeline_type}")
        self.data: Dict[str, Any] = {}
        self.status: Dict[str, Any] = {"progress": 0, "message": ""}
        self.items_processed = 0
        self.requests_used = 0
        self._reporter = reporter or NullReporter()

    def namespace(self, name: str) -> Dict[str, Any]:
        """Return (creating if needed) the ``data`` namespace ``name``."""
        return self.data.setdefault(name, {})

    def request_budget_left(self, max_requests: int) -> bool:
        return self.requests_used < max_requests

    async def update_status(self, progress: float, message: str) -> None:
        """Record progress (clamped to 0..100) and forward it to the reporter."""
        clamped = max(0, min(100, int(progress)))
        self.status = {"progress": clamped, "message": message}
        try:
            await self._reporter.report(self.run_id, self.pipeline_type, clamped, message)
        except Exception as e:
            self.logger.warning(f"Status reporter failed: {e}")


class Stage(ABC):
    """A single step of a pipeline."""

    name: str = "stage"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def execute(
        self, context: ExecutionContext, config: Dict[str, Any]
    ) -> ExecutionContext:
        """Run the stage against ``context`` and return it."""
        pass

    def setting(self, config: Dict[str, Any], key: str, default: Any = None) -> Any:
        """Look up ``key`` in the stage config, then the pipeline config."""
        if key in self.config:
            return self.config[key]
        return config.get(key, default)


class Pipeline:
    """An ordered, sealed-after-first-run sequence of stages."""

    def __init__(
        self,
        name: str,
        stages: Optional[List[Stage]] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.name = name
        self.config: Dict[str, Any] = dict(config or {})
        self._stages: List[Stage] = []
        self._sealed = False
        for stage in stages or []:
            self.add_stage(stage)

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    def add_stage(self, stage: Stage) -> "Pipeline":
        if not isinstance(stage, Stage):
            raise TypeError(f"Expected a Stage instance, got {type(stage).__name__}")
        if self._sealed:
            raise PipelineError(f"Pipeline '{self.name}' has already run; stages are sealed")
        self._stages.append(stage)
        return self

    async def run(self, context: ExecutionContext) -> ExecutionContext:
        """Execute every stage in order.

        Raises:
            StageError: wrapping the first exception raised by a stage
        """
        self._sealed = True
        await context.update_status(0, f"Starting {self.name}")

        for stage in self._stages:
            context.logger.info(f"Running stage {stage.name}")
            try:
                result = await stage.execute(context, self.config)
            except Exception as e:
                context.logger.error(f"Stage {stage.name} of {self.name} failed: {e}")
                raise StageError(stage.name, e) from e
            if result is not None:
                context = result

        await context.update_status(100, f"{self.name} completed")
        return context
