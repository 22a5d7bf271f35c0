"""Cron scheduler for pipelines.

Schedules are kept in memory (loaded from the schedule store at start-up and
written through on every change). A poll loop calls ``tick`` every
``poll_interval`` seconds and triggers each active schedule that is due.

A schedule never has more than one execution in flight: ``trigger`` checks and
sets the in-flight flag synchronously, so a second trigger that arrives while
a run is executing is skipped (logged, not queued).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from github_explorer.core.events import EventBus, SchedulerEvent, SchedulerEventType
from github_explorer.core.history import RunTrigger
from github_explorer.core.schedules import (
    DEFAULT_TIMEZONE,
    Schedule,
    ScheduleResult,
    calculate_next_run_time,
    is_valid_timezone,
    validate_cron_expression,
)

logger = logging.getLogger(__name__)


class InvalidScheduleError(ValueError):
    """Schedule definition failed validation."""


class ScheduleNotFoundError(LookupError):
    """No schedule with the given id."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineScheduler:
    def __init__(
        self,
        orchestrator,
        store,
        events: EventBus,
        pipeline_types: Iterable[str],
        poll_interval: float = 30.0,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.events = events
        self.pipeline_types = set(pipeline_types)
        self.poll_interval = poll_interval

        self._schedules: Dict[str, Schedule] = {}
        self._executing: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        # Executing schedules that another process deleted from the store
        self._removed_from_store: Set[str] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> int:
        """Load persisted schedules; returns how many were loaded."""
        self._schedules = {s.id: s for s in await self.store.list()}
        for schedule in self._schedules.values():
            if schedule.is_active and not schedule.next_run_at:
                schedule.next_run_at = self._next_run(schedule).isoformat()
                await self.store.save(schedule)
        logger.info(f"Scheduler loaded {len(self._schedules)} schedules")
        return len(self._schedules)

    async def refresh(self) -> None:
        """Pick up schedules added or removed in the store by other processes.

        In-memory copies of known schedules are authoritative and are not
        overwritten. An executing schedule that disappeared from the store is
        dropped once its run finishes instead of being written back.
        """
        stored = {s.id: s for s in await self.store.list()}
        for schedule_id, schedule in stored.items():
            if schedule_id not in self._schedules:
                if schedule.is_active and not schedule.next_run_at:
                    schedule.next_run_at = self._next_run(schedule).isoformat()
                self._schedules[schedule_id] = schedule
                logger.info(f"Loaded schedule {schedule_id} from store")
        for schedule_id in list(self._schedules):
            if schedule_id in stored:
                self._removed_from_store.discard(schedule_id)
                continue
            if schedule_id in self._executing:
                self._removed_from_store.add(schedule_id)
                continue
            del self._schedules[schedule_id]
            logger.info(f"Schedule {schedule_id} was removed from store")

    async def seed_default_schedules(self, defaults: Dict[str, str]) -> List[Schedule]:
        """Create one schedule per ``pipeline_type -> cron`` entry when none exist."""
        if self._schedules:
            return []
        created = []
        for pipeline_type, cron_expression in defaults.items():
            if pipeline_type not in self.pipeline_types:
                logger.warning(f"Skipping default schedule for unknown pipeline {pipeline_type}")
                continue
            created.append(
                await self.create_schedule(
                    name=f"Default {pipeline_type.replace('_', ' ')}",
                    pipeline_type=pipeline_type,
                    cron_expression=cron_expression,
                    description="Created automatically on first start",
                )
            )
        return created

    async def run_forever(self) -> None:
        self._stopping = asyncio.Event()
        logger.info(f"Scheduler loop started (every {self.poll_interval}s)")
        while not self._stopping.is_set():
            try:
                await self.refresh()
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler loop stopped")

    def start(self) -> asyncio.Task:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run_forever())
        return self._loop_task

    async def stop(self) -> None:
        """Stop the poll loop and wait for in-flight executions."""
        if self._stopping is not None:
            self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        await self.wait_for_idle()

    async def wait_for_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def _validate(self, pipeline_type: str, cron_expression: str, tz: str) -> None:
        if pipeline_type not in self.pipeline_types:
            raise InvalidScheduleError(f"Unknown pipeline type: {pipeline_type}")
        if not validate_cron_expression(cron_expression):
            raise InvalidScheduleError(f"Invalid cron expression: {cron_expression}")
        if not is_valid_timezone(tz):
            raise InvalidScheduleError(f"Invalid timezone: {tz}")

    def _next_run(self, schedule: Schedule, after: Optional[datetime] = None) -> datetime:
        return calculate_next_run_time(schedule.cron_expression, schedule.timezone, after)

    def _publish(self, event_type: SchedulerEventType, schedule: Schedule, **extra: Any) -> None:
        self.events.publish(
            SchedulerEvent(
                type=event_type,
                schedule_id=schedule.id,
                schedule_name=schedule.name,
                pipeline_type=schedule.pipeline_type,
                **extra,
            )
        )

    async def create_schedule(
        self,
        name: str,
        pipeline_type: str,
        cron_expression: str,
        timezone: str = DEFAULT_TIMEZONE,
        parameters: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> Schedule:
        self._validate(pipeline_type, cron_expression, timezone)
        schedule = Schedule(
            name=name,
            description=description,
            pipeline_type=pipeline_type,
            cron_expression=cron_expression,
            timezone=timezone,
            parameters=parameters or {},
            is_active=is_active,
        )
        if is_active:
            schedule.next_run_at = self._next_run(schedule).isoformat()
        await self.store.save(schedule)
        self._schedules[schedule.id] = schedule
        logger.info(f"Created schedule {schedule.id} ({pipeline_type}, '{cron_expression}')")
        self._publish(SchedulerEventType.SCHEDULE_CREATED, schedule)
        return schedule.model_copy()

    async def update_schedule(self, schedule_id: str, **changes: Any) -> Schedule:
        """Apply ``changes`` (name, description, cron_expression, timezone,
        parameters, is_active) and recompute the next run when timing changed."""
        current = self._schedules.get(schedule_id)
        if current is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")

        allowed = {"name", "description", "cron_expression", "timezone", "parameters", "is_active"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidScheduleError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None or k == "description"}

        updated = current.model_copy(update=changes)
        self._validate(updated.pipeline_type, updated.cron_expression, updated.timezone)

        timing_changed = any(
            k in changes and changes[k] != getattr(current, k)
            for k in ("cron_expression", "timezone", "is_active")
        )
        if timing_changed or (updated.is_active and not updated.next_run_at):
            updated.next_run_at = self._next_run(updated).isoformat() if updated.is_active else None
        updated.updated_at = _now().isoformat()

        await self.store.save(updated)
        self._schedules[schedule_id] = updated
        self._publish(SchedulerEventType.SCHEDULE_UPDATED, updated)
        return updated.model_copy()

    async def delete_schedule(self, schedule_id: str) -> bool:
        schedule = self._schedules.pop(schedule_id, None)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        await self.store.delete(schedule_id)
        logger.info(f"Deleted schedule {schedule_id}")
        self._publish(SchedulerEventType.SCHEDULE_DELETED, schedule)
        return True

    def get_schedules(self, pipeline_type: Optional[str] = None) -> List[Schedule]:
        schedules = [
            s.model_copy()
            for s in self._schedules.values()
            if pipeline_type is None or s.pipeline_type == pipeline_type
        ]
        return sorted(schedules, key=lambda s: s.created_at)

    def get_schedule(self, schedule_id: str) -> Schedule:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        return schedule.model_copy()

    def is_executing(self, schedule_id: str) -> bool:
        return schedule_id in self._executing

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Trigger every active schedule whose next run is due."""
        now = now or _now()
        triggered = []
        for schedule in list(self._schedules.values()):
            due_at = schedule.next_run_datetime()
            if not schedule.is_active or due_at is None or due_at > now:
                continue
            if self.trigger(schedule.id) is not None:
                triggered.append(schedule.id)
        return triggered

    def trigger(self, schedule_id: str) -> Optional[asyncio.Task]:
        """Start an execution unless one is already in flight.

        Returns the execution task, or ``None`` when the trigger was skipped.
        """
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        # Check-and-set with no await in between
        if schedule_id in self._executing:
            logger.info(f"Schedule {schedule_id} is already executing; skipping trigger")
            return None
        self._executing.add(schedule_id)

        task = asyncio.create_task(self._execute(schedule_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def trigger_now(self, schedule_id: str) -> bool:
        """Manual trigger; returns False when a run is already in flight."""
        return self.trigger(schedule_id) is not None

    async def _execute(self, schedule_id: str) -> None:
        schedule: Optional[Schedule] = None
        try:
            current = self._schedules.get(schedule_id)
            if current is None:
                logger.info(f"Schedule {schedule_id} was deleted before it started")
                return
            current.last_run_at = _now().isoformat()
            schedule = current.model_copy()
            await self.store.save(current)
            self._publish(SchedulerEventType.SCHEDULE_EXECUTING, schedule)

            try:
                result = await self.orchestrator.run_pipeline(
                    schedule.pipeline_type,
                    parameters=schedule.parameters,
                    trigger=RunTrigger.SCHEDULE,
                    schedule_id=schedule.id,
                )
            except Exception as e:
                logger.error(f"Scheduled run of {schedule.pipeline_type} ({schedule.id}) failed: {e}")
                schedule.last_result = ScheduleResult(success=False, error=str(e))
                self._publish(SchedulerEventType.SCHEDULE_FAILED, schedule, error=str(e))
            else:
                history_id = (result or {}).get("history_id")
                schedule.last_result = ScheduleResult(success=True, history_id=history_id)
                self._publish(
                    SchedulerEventType.SCHEDULE_COMPLETED,
                    schedule,
                    history_id=history_id,
                    details={"items_processed": (result or {}).get("items_processed", 0)},
                )
        finally:
            try:
                await self._finish(schedule_id, schedule)
            except Exception:
                logger.exception(f"Failed to persist schedule {schedule_id} after execution")
            finally:
                self._executing.discard(schedule_id)

    async def _finish(self, schedule_id: str, executed: Optional[Schedule]) -> None:
        if schedule_id in self._removed_from_store:
            self._removed_from_store.discard(schedule_id)
            self._schedules.pop(schedule_id, None)
            logger.info(f"Schedule {schedule_id} was removed from store during its run")
            return
        current = self._schedules.get(schedule_id)
        # A schedule deleted mid-run must not be written back
        if current is None:
            return
        # Start from the live copy so edits made during the run are kept
        update: Dict[str, Any] = {}
        if executed is not None:
            update = {"last_run_at": executed.last_run_at, "last_result": executed.last_result}
        finished = current.model_copy(update=update)
        if finished.is_active:
            finished.next_run_at = self._next_run(finished).isoformat()
        self._schedules[schedule_id] = finished
        await self.store.save(finished)
