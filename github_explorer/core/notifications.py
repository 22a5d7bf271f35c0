"""Notification service fed by scheduler events.

Every scheduler event becomes exactly one notification, kept in a bounded
newest-first buffer. Failed executions additionally go through the critical
error channels (email and webhook), which currently only log.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Optional

from pydantic import BaseModel, Field
from ulid import ULID

from github_explorer.core.events import EventBus, SchedulerEvent, SchedulerEventType

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class NotificationType(str, Enum):
    SCHEDULE_CREATED = "schedule.created"
    SCHEDULE_UPDATED = "schedule.updated"
    SCHEDULE_DELETED = "schedule.deleted"
    PIPELINE_EXECUTING = "pipeline.executing"
    PIPELINE_COMPLETED = "pipeline.completed"
    PIPELINE_FAILED = "pipeline.failed"


class NotificationNotFoundError(LookupError):
    """Raised when marking an unknown notification as read."""


class Notification(BaseModel):
    id: str = Field(default_factory=lambda: str(ULID()))
    type: NotificationType
    title: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    level: NotificationLevel = NotificationLevel.INFO
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    is_read: bool = False


# event type -> (notification type, level, title)
EVENT_NOTIFICATIONS = {
    SchedulerEventType.SCHEDULE_CREATED: (
        NotificationType.SCHEDULE_CREATED,
        NotificationLevel.INFO,
        "Pipeline Schedule Created",
    ),
    SchedulerEventType.SCHEDULE_UPDATED: (
        NotificationType.SCHEDULE_UPDATED,
        NotificationLevel.INFO,
        "Pipeline Schedule Updated",
    ),
    SchedulerEventType.SCHEDULE_DELETED: (
        NotificationType.SCHEDULE_DELETED,
        NotificationLevel.INFO,
        "Pipeline Schedule Deleted",
    ),
    SchedulerEventType.SCHEDULE_EXECUTING: (
        NotificationType.PIPELINE_EXECUTING,
        NotificationLevel.INFO,
        "Pipeline Execution Started",
    ),
    SchedulerEventType.SCHEDULE_COMPLETED: (
        NotificationType.PIPELINE_COMPLETED,
        NotificationLevel.SUCCESS,
        "Pipeline Execution Completed",
    ),
    SchedulerEventType.SCHEDULE_FAILED: (
        NotificationType.PIPELINE_FAILED,
        NotificationLevel.ERROR,
        "Pipeline Execution Failed",
    ),
}


def _message(event: SchedulerEvent) -> str:
    name = event.schedule_name or event.schedule_id
    pipeline = event.pipeline_type or "pipeline"
    if event.type == SchedulerEventType.SCHEDULE_CREATED:
        return f"Schedule '{name}' for {pipeline} was created"
    if event.type == SchedulerEventType.SCHEDULE_UPDATED:
        return f"Schedule '{name}' for {pipeline} was updated"
    if event.type == SchedulerEventType.SCHEDULE_DELETED:
        return f"Schedule '{name}' for {pipeline} was deleted"
    if event.type == SchedulerEventType.SCHEDULE_EXECUTING:
        return f"{pipeline} started by schedule '{name}'"
    if event.type == SchedulerEventType.SCHEDULE_COMPLETED:
        return f"{pipeline} completed successfully (schedule '{name}')"
    return f"{pipeline} failed (schedule '{name}'): {event.error or 'unknown error'}"


class NotificationService:
    """Bounded in-memory notification feed."""

    def __init__(self, capacity: int = 100):
        self._notifications: Deque[Notification] = deque(maxlen=capacity)

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(self.handle_event, name="notifications")

    def add(self, notification: Notification) -> Notification:
        self._notifications.appendleft(notification)
        return notification

    async def handle_event(self, event: SchedulerEvent) -> Notification:
        notification_type, level, title = EVENT_NOTIFICATIONS[event.type]
        details: Dict[str, Any] = {
            "schedule_id": event.schedule_id,
            "schedule_name": event.schedule_name,
            "pipeline_type": event.pipeline_type,
            "timestamp": event.timestamp,
        }
        if event.error:
            details["error"] = event.error
        if event.history_id:
            details["history_id"] = event.history_id
        details.update(event.details)

        notification = self.add(
            Notification(
                type=notification_type,
                title=title,
                message=_message(event),
                details=details,
                level=level,
            )
        )
        if event.type == SchedulerEventType.SCHEDULE_FAILED:
            await self.send_critical_error_notifications(notification)
        return notification

    def get_notifications(
        self,
        limit: int = 20,
        offset: int = 0,
        type: Optional[str] = None,
        level: Optional[str] = None,
        is_read: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Filtered page of notifications, newest first.

        ``count`` is the number of matches before paging.
        """
        matched = [
            n
            for n in self._notifications
            if (type is None or n.type.value == type)
            and (level is None or n.level.value == level)
            and (is_read is None or n.is_read == is_read)
        ]
        return {
            "data": [n.model_copy() for n in matched[offset : offset + limit]],
            "count": len(matched),
            "limit": limit,
            "offset": offset,
        }

    def mark_as_read(self, notification_id: str) -> Notification:
        for notification in self._notifications:
            if notification.id == notification_id:
                notification.is_read = True
                return notification
        raise NotificationNotFoundError(f"Notification {notification_id} not found")

    def mark_all_as_read(self) -> int:
        marked = 0
        for notification in self._notifications:
            if not notification.is_read:
                notification.is_read = True
                marked += 1
        return marked

    def clear(self) -> None:
        self._notifications.clear()

    def __len__(self) -> int:
        return len(self._notifications)

    async def send_critical_error_notifications(self, notification: Notification) -> None:
        logger.error(f"CRITICAL: {notification.title}: {notification.message}")
        await self.send_email(notification)
        await self.send_webhook(notification)

    async def send_email(self, notification: Notification) -> None:
        # No mail transport is configured; record the intent
        logger.info(f"Email notification: {notification.title} - {notification.message}")

    async def send_webhook(self, notification: Notification) -> None:
        logger.info(f"Webhook notification: {notification.title} - {notification.message}")
