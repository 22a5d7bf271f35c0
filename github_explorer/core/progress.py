"""Status reporting abstraction for pipeline runs.

Stages call ``ExecutionContext.update_status(progress, message)``; the context
forwards every update to a ``StatusReporter``. Implementations decide where the
update goes:

- LoggingReporter: logs updates (API and worker processes)
- CLIReporter: prints a progress line to the terminal
- CompositeReporter: fans out to several reporters
- CallbackReporter: wraps a plain async callable
- NullReporter: discards updates
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, runtime_checkable

from rich.console import Console

logger = logging.getLogger(__name__)


@runtime_checkable
class StatusReporter(Protocol):
    """Protocol for receiving progress updates of a pipeline run."""

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        """Receive a progress update.

        Args:
            run_id: History id of the run
            pipeline_type: Pipeline being executed
            progress: Percentage, already clamped to 0..100
            message: Human-readable status message
        """
        ...


class NullReporter:
    """No-op reporter that discards all updates."""

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        pass


class LoggingReporter:
    """Reporter that logs updates."""

    def __init__(self, logger_name: str = __name__, level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        self._logger.log(self._level, f"[{pipeline_type}:{run_id}] {progress}% {message}")


class CLIReporter:
    """Reporter that prints progress lines to the terminal."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console(stderr=True)

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        color = "green" if progress >= 100 else "cyan"
        self._console.print(f"[{color}]{progress:>3}%[/{color}] [dim]{pipeline_type}[/dim] {message}")


class CompositeReporter:
    """Reporter that forwards updates to multiple child reporters."""

    def __init__(self, reporters: List[StatusReporter]):
        self._reporters = reporters

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        if not self._reporters:
            return
        await asyncio.gather(
            *[r.report(run_id, pipeline_type, progress, message) for r in self._reporters],
            return_exceptions=True,  # Don't fail if one reporter fails
        )


class CallbackReporter:
    """Reporter that wraps an async callback ``(run_id, pipeline_type, progress, message)``."""

    def __init__(self, callback: Callable[[str, str, int, str], Awaitable[Any]]):
        self._callback = callback

    async def report(self, run_id: str, pipeline_type: str, progress: int, message: str) -> None:
        await self._callback(run_id, pipeline_type, progress, message)


def create_reporter(
    *,
    cli: bool = False,
    log: bool = True,
    additional_reporters: Optional[List[StatusReporter]] = None,
) -> StatusReporter:
    """Create the appropriate reporter for the execution context.

    Args:
        cli: Whether to print updates to the terminal
        log: Whether to log updates
        additional_reporters: Extra reporters to include

    Returns:
        StatusReporter instance (composite if multiple destinations)
    """
    reporters: List[StatusReporter] = []
    if log:
        reporters.append(LoggingReporter())
    if cli:
        reporters.append(CLIReporter())
    if additional_reporters:
        reporters.extend(additional_reporters)

    if not reporters:
        return NullReporter()
    if len(reporters) == 1:
        return reporters[0]
    return CompositeReporter(reporters)
