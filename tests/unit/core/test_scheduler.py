"""Tests for the cron pipeline scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from github_explorer.core.events import EventBus, SchedulerEventType
from github_explorer.core.history import RunTrigger
from github_explorer.core.scheduler import (
    InvalidScheduleError,
    PipelineScheduler,
    ScheduleNotFoundError,
)
from github_explorer.core.schedules import InMemoryScheduleStore

PIPELINE_TYPES = ["github_sync", "entity_extraction", "sitemap_generation"]


class GatedOrchestrator:
    """Orchestrator whose runs block until ``gate`` is set."""

    def __init__(self, error=None):
        self.gate = asyncio.Event()
        self.calls = []
        self.error = error

    async def run_pipeline(self, pipeline_type, parameters=None, trigger=None, schedule_id=None):
        self.calls.append(
            {"pipeline_type": pipeline_type, "trigger": trigger, "schedule_id": schedule_id}
        )
        await self.gate.wait()
        if self.error:
            raise self.error
        return {"history_id": f"run-{len(self.calls)}", "items_processed": 3}


class EventRecorder:
    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe(self.handle, name="recorder")

    async def handle(self, event):
        self.events.append(event)

    def types(self):
        return [e.type for e in self.events]


@pytest.fixture
def store():
    return InMemoryScheduleStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def orchestrator():
    return GatedOrchestrator()


@pytest.fixture
def scheduler(orchestrator, store, bus):
    return PipelineScheduler(orchestrator, store, bus, PIPELINE_TYPES, poll_interval=0.01)


class TestScheduleCrud:
    @pytest.mark.asyncio
    async def test_create_computes_next_run_and_persists(self, scheduler, store):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/15 * * * *"
        )

        assert schedule.next_run_datetime() > datetime.now(timezone.utc)
        assert (await store.get(schedule.id)).name == "Sync"

    @pytest.mark.asyncio
    async def test_inactive_schedule_has_no_next_run(self, scheduler):
        schedule = await scheduler.create_schedule(
            name="Off", pipeline_type="github_sync", cron_expression="0 * * * *", is_active=False
        )
        assert schedule.next_run_at is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"pipeline_type": "unknown", "cron_expression": "* * * * *"},
            {"pipeline_type": "github_sync", "cron_expression": "every minute"},
            {"pipeline_type": "github_sync", "cron_expression": "* * * * *", "timezone": "Nowhere"},
        ],
    )
    async def test_create_rejects_invalid_definitions(self, scheduler, kwargs):
        with pytest.raises(InvalidScheduleError):
            await scheduler.create_schedule(name="bad", **kwargs)

    @pytest.mark.asyncio
    async def test_update_recomputes_next_run_when_cron_changes(self, scheduler):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="0 0 1 1 *"
        )
        updated = await scheduler.update_schedule(schedule.id, cron_expression="*/5 * * * *")

        assert updated.cron_expression == "*/5 * * * *"
        assert updated.next_run_datetime() < schedule.next_run_datetime()

    @pytest.mark.asyncio
    async def test_deactivate_clears_next_run(self, scheduler):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        updated = await scheduler.update_schedule(schedule.id, is_active=False)
        assert updated.next_run_at is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, scheduler):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        with pytest.raises(InvalidScheduleError):
            await scheduler.update_schedule(schedule.id, pipeline_type="entity_extraction")

    @pytest.mark.asyncio
    async def test_delete_and_missing(self, scheduler, store):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        await scheduler.delete_schedule(schedule.id)

        assert await store.get(schedule.id) is None
        with pytest.raises(ScheduleNotFoundError):
            scheduler.get_schedule(schedule.id)
        with pytest.raises(ScheduleNotFoundError):
            await scheduler.delete_schedule(schedule.id)

    @pytest.mark.asyncio
    async def test_crud_publishes_events(self, scheduler, bus):
        recorder = EventRecorder(bus)
        await bus.start()
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        await scheduler.update_schedule(schedule.id, name="Renamed")
        await scheduler.delete_schedule(schedule.id)
        await bus.stop()

        assert recorder.types() == [
            SchedulerEventType.SCHEDULE_CREATED,
            SchedulerEventType.SCHEDULE_UPDATED,
            SchedulerEventType.SCHEDULE_DELETED,
        ]

    @pytest.mark.asyncio
    async def test_seed_default_schedules_only_when_empty(self, scheduler):
        created = await scheduler.seed_default_schedules(
            {"github_sync": "*/15 * * * *", "not_a_pipeline": "* * * * *"}
        )
        assert [s.pipeline_type for s in created] == ["github_sync"]
        assert await scheduler.seed_default_schedules({"github_sync": "*/15 * * * *"}) == []


class TestExecution:
    @pytest.mark.asyncio
    async def test_two_quick_triggers_execute_once(self, scheduler, orchestrator, bus):
        recorder = EventRecorder(bus)
        await bus.start()
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )

        first = scheduler.trigger(schedule.id)
        second = scheduler.trigger(schedule.id)
        assert first is not None
        assert second is None
        assert scheduler.is_executing(schedule.id)

        orchestrator.gate.set()
        await scheduler.wait_for_idle()
        await bus.stop()

        assert len(orchestrator.calls) == 1
        assert orchestrator.calls[0]["trigger"] == RunTrigger.SCHEDULE
        assert recorder.types().count(SchedulerEventType.SCHEDULE_EXECUTING) == 1
        assert not scheduler.is_executing(schedule.id)

    @pytest.mark.asyncio
    async def test_success_records_result_and_next_run(self, scheduler, orchestrator, bus):
        recorder = EventRecorder(bus)
        await bus.start()
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        orchestrator.gate.set()
        assert await scheduler.trigger_now(schedule.id) is True
        await scheduler.wait_for_idle()
        await bus.stop()

        finished = scheduler.get_schedule(schedule.id)
        assert finished.last_run_at is not None
        assert finished.last_result.success is True
        assert finished.last_result.history_id == "run-1"
        assert finished.next_run_datetime() > datetime.now(timezone.utc)

        completed = recorder.events[-1]
        assert completed.type == SchedulerEventType.SCHEDULE_COMPLETED
        assert completed.history_id == "run-1"
        assert completed.details["items_processed"] == 3

    @pytest.mark.asyncio
    async def test_failure_publishes_failed_event(self, store, bus):
        orchestrator = GatedOrchestrator(error=RuntimeError("stage exploded"))
        orchestrator.gate.set()
        scheduler = PipelineScheduler(orchestrator, store, bus, PIPELINE_TYPES)
        recorder = EventRecorder(bus)
        await bus.start()
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        scheduler.trigger(schedule.id)
        await scheduler.wait_for_idle()
        await bus.stop()

        finished = await store.get(schedule.id)
        assert finished.last_result.success is False
        assert finished.last_result.error == "stage exploded"
        assert recorder.events[-1].type == SchedulerEventType.SCHEDULE_FAILED
        assert recorder.events[-1].error == "stage exploded"

    @pytest.mark.asyncio
    async def test_schedule_deleted_mid_run_is_not_written_back(
        self, scheduler, orchestrator, store
    ):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        scheduler.trigger(schedule.id)
        await asyncio.sleep(0)
        await scheduler.delete_schedule(schedule.id)

        orchestrator.gate.set()
        await scheduler.wait_for_idle()

        assert await store.get(schedule.id) is None
        assert scheduler.get_schedules() == []

    @pytest.mark.asyncio
    async def test_store_deletion_from_other_process_mid_run_is_not_recreated(
        self, scheduler, orchestrator, store
    ):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        scheduler.trigger(schedule.id)
        await asyncio.sleep(0)
        # e.g. ``github-explorer schedule delete`` writing straight to the store
        await store.delete(schedule.id)
        await scheduler.refresh()
        assert scheduler.get_schedules() != []

        orchestrator.gate.set()
        await scheduler.wait_for_idle()

        assert await store.get(schedule.id) is None
        assert scheduler.get_schedules() == []

    @pytest.mark.asyncio
    async def test_edit_during_run_is_kept(self, scheduler, orchestrator):
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        scheduler.trigger(schedule.id)
        await asyncio.sleep(0)
        await scheduler.update_schedule(schedule.id, name="Renamed")

        orchestrator.gate.set()
        await scheduler.wait_for_idle()

        finished = scheduler.get_schedule(schedule.id)
        assert finished.name == "Renamed"
        assert finished.last_result.success is True

    @pytest.mark.asyncio
    async def test_tick_triggers_only_due_active_schedules(self, scheduler, orchestrator):
        due = await scheduler.create_schedule(
            name="Due", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        await scheduler.create_schedule(
            name="Later", pipeline_type="entity_extraction", cron_expression="*/5 * * * *"
        )
        await scheduler.create_schedule(
            name="Off",
            pipeline_type="sitemap_generation",
            cron_expression="*/5 * * * *",
            is_active=False,
        )

        now = datetime.now(timezone.utc)
        scheduler._schedules[due.id].next_run_at = (now - timedelta(minutes=1)).isoformat()

        assert scheduler.tick(now) == [due.id]
        orchestrator.gate.set()
        await scheduler.wait_for_idle()
        assert [c["pipeline_type"] for c in orchestrator.calls] == ["github_sync"]

    @pytest.mark.asyncio
    async def test_trigger_unknown_schedule(self, scheduler):
        with pytest.raises(ScheduleNotFoundError):
            scheduler.trigger("missing")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_loads_and_refresh_tracks_store(self, scheduler, store):
        other = PipelineScheduler(None, store, EventBus(), PIPELINE_TYPES)
        created = await other.create_schedule(
            name="From CLI", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )

        assert await scheduler.initialize() == 1
        assert scheduler.get_schedule(created.id).name == "From CLI"

        added = await other.create_schedule(
            name="Later", pipeline_type="entity_extraction", cron_expression="0 * * * *"
        )
        await store.delete(created.id)
        await scheduler.refresh()

        assert [s.id for s in scheduler.get_schedules()] == [added.id]

    @pytest.mark.asyncio
    async def test_start_and_stop_loop(self, scheduler, orchestrator):
        orchestrator.gate.set()
        schedule = await scheduler.create_schedule(
            name="Sync", pipeline_type="github_sync", cron_expression="*/5 * * * *"
        )
        scheduler._schedules[schedule.id].next_run_at = (
            datetime.now(timezone.utc) - timedelta(seconds=1)
        ).isoformat()

        scheduler.start()
        for _ in range(100):
            if orchestrator.calls:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert len(orchestrator.calls) == 1
