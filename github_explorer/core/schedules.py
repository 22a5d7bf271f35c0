"""
Schedule domain model, cron helpers and storage helpers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import BaseModel, Field
from redisvl.query import FilterQuery
from redisvl.query.filter import Tag
from ulid import ULID

from github_explorer.core.keys import RedisKeys
from github_explorer.core.redis import get_redis_client, get_schedules_index

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"

TIMESTAMP_FIELDS = ["created_at", "updated_at", "last_run_at", "next_run_at"]
SCHEDULE_FIELDS = [
    "id",
    "name",
    "description",
    "pipeline_type",
    "cron_expression",
    "timezone",
    "parameters",
    "is_active",
    "last_result",
    *TIMESTAMP_FIELDS,
]


class ScheduleResult(BaseModel):
    """Outcome of the most recent scheduled execution."""

    success: bool
    error: Optional[str] = None
    history_id: Optional[str] = None
    completed_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Schedule(BaseModel):
    """Cron schedule for a pipeline type."""

    id: str = Field(default_factory=lambda: str(ULID()))
    name: str = Field(..., description="Human-readable schedule name")
    description: Optional[str] = Field(None, description="Schedule description")
    pipeline_type: str = Field(..., description="Pipeline triggered by this schedule")
    cron_expression: str = Field(..., description="Five-field cron expression")
    timezone: str = Field(DEFAULT_TIMEZONE, description="IANA timezone the cron is evaluated in")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Pipeline parameters")
    is_active: bool = Field(True, description="Whether the schedule fires")
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    last_run_at: Optional[str] = Field(None, description="Last execution timestamp")
    next_run_at: Optional[str] = Field(None, description="Next scheduled execution timestamp")
    last_result: Optional[ScheduleResult] = None

    def next_run_datetime(self) -> Optional[datetime]:
        if not self.next_run_at:
            return None
        return datetime.fromisoformat(self.next_run_at)


# ============================================================================
# Cron helpers
# ============================================================================


def validate_cron_expression(expression: str) -> bool:
    """True if ``expression`` is a valid cron expression."""
    try:
        return bool(expression) and croniter.is_valid(expression)
    except Exception:
        return False


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the ``ZoneInfo`` for ``name``; unknown names fall back to UTC."""
    if not name:
        return ZoneInfo(DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def calculate_next_run_time(
    cron_expression: str, tz: Optional[str] = DEFAULT_TIMEZONE, after: Optional[datetime] = None
) -> datetime:
    """Next fire time strictly after ``after`` (default: now), returned in UTC."""
    zone = resolve_timezone(tz)
    base = after or datetime.now(timezone.utc)
    if base.tzinfo is None:
        base = base.replace(tzinfo=timezone.utc)
    next_local = croniter(cron_expression, base.astimezone(zone)).get_next(datetime)
    return next_local.astimezone(timezone.utc)


# ============================================================================
# Redis storage
# ============================================================================


def _to_redis(schedule_data: Dict[str, Any]) -> Dict[str, Any]:
    redis_data = dict(schedule_data)

    for field in TIMESTAMP_FIELDS:
        value = redis_data.get(field)
        if isinstance(value, str) and value:
            redis_data[field] = datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        elif isinstance(value, datetime):
            redis_data[field] = value.timestamp()
        else:
            redis_data[field] = 0  # Default for numeric fields

    redis_data["is_active"] = "true" if redis_data.get("is_active", True) else "false"
    redis_data["parameters"] = json.dumps(redis_data.get("parameters") or {})
    redis_data["last_result"] = (
        json.dumps(redis_data["last_result"]) if redis_data.get("last_result") else ""
    )

    for key_name, value in redis_data.items():
        if value is None:
            redis_data[key_name] = ""
    return redis_data


def _from_redis(data: Dict[str, Any]) -> Dict[str, Any]:
    schedule: Dict[str, Any] = {}
    for k, v in data.items():
        key_str = k.decode() if isinstance(k, bytes) else k
        schedule[key_str] = v.decode() if isinstance(v, bytes) else v

    redis_key = schedule.get("id") or ""
    prefix = f"{RedisKeys.PREFIX_SCHEDULES}:"
    if redis_key.startswith(prefix):
        schedule["id"] = redis_key[len(prefix) :]

    for field in TIMESTAMP_FIELDS:
        try:
            timestamp = float(schedule.get(field) or 0)
        except (ValueError, TypeError):
            timestamp = 0
        schedule[field] = (
            datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat() if timestamp > 0 else None
        )

    schedule["is_active"] = schedule.get("is_active", "true") == "true"
    schedule["parameters"] = json.loads(schedule.get("parameters") or "{}")
    schedule["last_result"] = json.loads(schedule["last_result"]) if schedule.get("last_result") else None
    schedule["description"] = schedule.get("description") or None
    return schedule


async def store_schedule(schedule_data: Dict[str, Any]) -> bool:
    """Store a schedule hash (covered by the schedules search index)."""
    try:
        client = get_redis_client()
        await client.hset(
            RedisKeys.schedule(schedule_data["id"]), mapping=_to_redis(schedule_data)
        )
        logger.info(f"Stored schedule {schedule_data['id']} in Redis")
        return True
    except Exception as e:
        logger.error(f"Failed to store schedule {schedule_data.get('id', 'unknown')}: {e}")
        return False


async def get_schedule(schedule_id: str) -> Optional[Dict[str, Any]]:
    """Retrieve a schedule from Redis."""
    try:
        client = get_redis_client()
        data = await client.hgetall(RedisKeys.schedule(schedule_id))
        if not data:
            return None
        return _from_redis(data)
    except Exception as e:
        logger.error(f"Failed to get schedule {schedule_id}: {e}")
        return None


async def list_schedules(
    pipeline_type: Optional[str] = None, limit: int = 1000
) -> List[Dict[str, Any]]:
    """List schedules (newest first) using the RedisVL index."""
    index = await get_schedules_index()
    filter_expression = Tag("pipeline_type") == pipeline_type if pipeline_type else "*"
    query = FilterQuery(
        return_fields=SCHEDULE_FIELDS,
        filter_expression=filter_expression,
        num_results=limit,
        sort_by=("created_at", "DESC"),
    )

    schedules = []
    for result in await index.query(query):
        try:
            schedules.append(_from_redis(dict(result)))
        except Exception as e:
            logger.error(f"Failed to process schedule result: {e}")
    return schedules


async def delete_schedule(schedule_id: str) -> bool:
    """Delete a schedule from Redis."""
    try:
        client = get_redis_client()
        result = await client.delete(RedisKeys.schedule(schedule_id))
        if result:
            logger.info(f"Deleted schedule {schedule_id} from Redis")
            return True
        logger.warning(f"Schedule {schedule_id} not found for deletion")
        return False
    except Exception as e:
        logger.error(f"Failed to delete schedule {schedule_id}: {e}")
        return False


class RedisScheduleStore:
    """Schedule persistence used by the scheduler."""

    async def list(self) -> List[Schedule]:
        return [Schedule(**data) for data in await list_schedules()]

    async def get(self, schedule_id: str) -> Optional[Schedule]:
        data = await get_schedule(schedule_id)
        return Schedule(**data) if data else None

    async def save(self, schedule: Schedule) -> bool:
        return await store_schedule(schedule.model_dump(mode="json"))

    async def delete(self, schedule_id: str) -> bool:
        return await delete_schedule(schedule_id)


class InMemoryScheduleStore:
    def __init__(self):
        self._schedules: Dict[str, Schedule] = {}

    async def list(self) -> List[Schedule]:
        return sorted(
            (s.model_copy() for s in self._schedules.values()),
            key=lambda s: s.created_at,
            reverse=True,
        )

    async def get(self, schedule_id: str) -> Optional[Schedule]:
        schedule = self._schedules.get(schedule_id)
        return schedule.model_copy() if schedule else None

    async def save(self, schedule: Schedule) -> bool:
        self._schedules[schedule.id] = schedule.model_copy()
        return True

    async def delete(self, schedule_id: str) -> bool:
        return self._schedules.pop(schedule_id, None) is not None
