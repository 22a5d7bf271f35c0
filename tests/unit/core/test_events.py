"""Tests for the scheduler event bus."""

import asyncio

import pytest

from github_explorer.core.events import EventBus, SchedulerEvent, SchedulerEventType


def _event(n: int) -> SchedulerEvent:
    return SchedulerEvent(type=SchedulerEventType.SCHEDULE_CREATED, schedule_id=f"s{n}")


class TestEventBus:
    @pytest.mark.asyncio
    async def test_every_subscriber_sees_events_in_order(self):
        bus = EventBus()
        first, second = [], []

        async def record_first(event):
            first.append(event.schedule_id)

        async def record_second(event):
            second.append(event.schedule_id)

        bus.subscribe(record_first)
        bus.subscribe(record_second)
        await bus.start()
        for n in range(5):
            bus.publish(_event(n))
        await bus.stop()

        assert first == second == ["s0", "s1", "s2", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_affect_others(self, caplog):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("subscriber bug")

        async def healthy(event):
            received.append(event.schedule_id)

        bus.subscribe(broken, name="broken")
        bus.subscribe(healthy, name="healthy")
        await bus.start()
        bus.publish(_event(1))
        bus.publish(_event(2))
        await bus.drain()
        await bus.stop()

        assert received == ["s1", "s2"]
        assert "Subscriber broken failed" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_block_publisher(self):
        bus = EventBus()
        gate = asyncio.Event()

        async def slow(event):
            await gate.wait()

        bus.subscribe(slow)
        await bus.start()
        for n in range(10):
            bus.publish(_event(n))
        gate.set()
        await bus.stop()

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self, caplog):
        bus = EventBus(queue_size=1)

        async def handler(event):
            pass

        bus.subscribe(handler, name="tiny")
        bus.publish(_event(1))
        bus.publish(_event(2))
        assert "Event queue for tiny is full" in caplog.text

    def test_extra_fields_are_preserved(self):
        event = SchedulerEvent(
            type=SchedulerEventType.SCHEDULE_FAILED, schedule_id="s", attempt=2
        )
        assert event.model_dump()["attempt"] == 2
