"""In-process event channel for scheduler lifecycle events.

Each subscriber gets its own bounded ``asyncio.Queue`` and consumer task, so a
slow or failing subscriber never blocks the publisher or other subscribers.
Events reach every subscriber in publish order.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SchedulerEventType(str, Enum):
    SCHEDULE_CREATED = "schedule:created"
    SCHEDULE_UPDATED = "schedule:updated"
    SCHEDULE_DELETED = "schedule:deleted"
    SCHEDULE_EXECUTING = "schedule:executing"
    SCHEDULE_COMPLETED = "schedule:completed"
    SCHEDULE_FAILED = "schedule:failed"


class SchedulerEvent(BaseModel):
    """Event published by the scheduler.

    Additional fields are allowed and preserved.
    """

    model_config = ConfigDict(extra="allow")

    type: SchedulerEventType
    schedule_id: str
    schedule_name: Optional[str] = None
    pipeline_type: Optional[str] = None
    history_id: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


EventHandler = Callable[[SchedulerEvent], Awaitable[Any]]


class _Subscription:
    def __init__(self, name: str, handler: EventHandler, maxsize: int):
        self.name = name
        self.handler = handler
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.task: Optional[asyncio.Task] = None


class EventBus:
    """Fan-out event channel with one queue per subscriber."""

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: List[_Subscription] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, handler: EventHandler, name: Optional[str] = None) -> None:
        """Register ``handler``; it receives every event published afterwards."""
        name = name or getattr(handler, "__qualname__", "subscriber")
        sub = _Subscription(name, handler, self._queue_size)
        self._subscriptions.append(sub)
        if self._running:
            sub.task = asyncio.create_task(self._consume(sub))

    def publish(self, event: SchedulerEvent) -> None:
        """Queue ``event`` for every subscriber without blocking."""
        for sub in self._subscriptions:
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue for {sub.name} is full; dropping {event.type.value}")

    async def _consume(self, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
            except Exception:
                logger.exception(f"Subscriber {sub.name} failed handling {event.type.value}")
            finally:
                sub.queue.task_done()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for sub in self._subscriptions:
            if sub.task is None:
                sub.task = asyncio.create_task(self._consume(sub))

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await asyncio.gather(*[sub.queue.join() for sub in self._subscriptions if sub.task])

    async def stop(self) -> None:
        if not self._running:
            return
        await self.drain()
        self._running = False
        tasks = [sub.task for sub in self._subscriptions if sub.task]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for sub in self._subscriptions:
            sub.task = None
