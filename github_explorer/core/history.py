"""Pipeline run history.

Each run is a Redis hash indexed by start time in a global sorted set and a
per-pipeline-type sorted set. A record is finalized (completed or failed)
exactly once: finalization claims ``completed_at`` with ``HSETNX`` and a
second attempt is a no-op.
"""

import json
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from ulid import ULID

from github_explorer.core.keys import RedisKeys
from github_explorer.core.redis import get_redis_client

logger = logging.getLogger(__name__)

STALE_RUN_MESSAGE = "Pipeline run automatically marked as failed due to timeout"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"


class PipelineRun(BaseModel):
    """A single pipeline execution record."""

    id: str = Field(default_factory=lambda: str(ULID()))
    pipeline_type: str
    status: RunStatus = RunStatus.RUNNING
    started_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    completed_at: Optional[str] = None
    items_processed: int = 0
    error_message: Optional[str] = None
    trigger: RunTrigger = RunTrigger.MANUAL
    schedule_id: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    def duration_seconds(self) -> Optional[float]:
        if not self.completed_at:
            return None
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        return round((end - start).total_seconds(), 3)

    def to_response(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["duration_seconds"] = self.duration_seconds()
        return data


def _ts_to_iso(value: Any) -> Optional[str]:
    if value in (None, "", b""):
        return None
    ts = float(value)
    if ts <= 0:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _iso_to_ts(value: Optional[str]) -> float:
    if not value:
        return 0.0
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def _decode(v):
    return v.decode() if isinstance(v, bytes) else v


class PipelineHistoryStore:
    """Redis backed history of pipeline runs."""

    def __init__(self, redis_client=None):
        self._redis = redis_client or get_redis_client()

    def _to_hash(self, run: PipelineRun) -> Dict[str, Any]:
        return {
            "id": run.id,
            "pipeline_type": run.pipeline_type,
            "status": run.status.value,
            "started_at": _iso_to_ts(run.started_at),
            "items_processed": run.items_processed,
            "error_message": run.error_message or "",
            "trigger": run.trigger.value,
            "schedule_id": run.schedule_id or "",
            "parameters": json.dumps(run.parameters),
        }

    def _from_hash(self, raw: Dict[Any, Any]) -> PipelineRun:
        data = {_decode(k): _decode(v) for k, v in raw.items()}
        return PipelineRun(
            id=data["id"],
            pipeline_type=data["pipeline_type"],
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            started_at=_ts_to_iso(data.get("started_at")) or "",
            completed_at=_ts_to_iso(data.get("completed_at")),
            items_processed=int(data.get("items_processed") or 0),
            error_message=data.get("error_message") or None,
            trigger=RunTrigger(data.get("trigger") or RunTrigger.MANUAL.value),
            schedule_id=data.get("schedule_id") or None,
            parameters=json.loads(data.get("parameters") or "{}"),
        )

    async def start(
        self,
        pipeline_type: str,
        trigger: RunTrigger = RunTrigger.MANUAL,
        schedule_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        run = PipelineRun(
            pipeline_type=pipeline_type,
            trigger=trigger,
            schedule_id=schedule_id,
            parameters=parameters or {},
        )
        score = _iso_to_ts(run.started_at)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(RedisKeys.pipeline_run(run.id), mapping=self._to_hash(run))
            pipe.zadd(RedisKeys.pipeline_runs_index(), {run.id: score})
            pipe.zadd(RedisKeys.pipeline_runs_type_index(pipeline_type), {run.id: score})
            await pipe.execute()
        logger.info(f"Started {pipeline_type} run {run.id}")
        return run

    async def get(self, run_id: str) -> Optional[PipelineRun]:
        raw = await self._redis.hgetall(RedisKeys.pipeline_run(run_id))
        if not raw:
            return None
        return self._from_hash(raw)

    async def _finalize(
        self,
        run_id: str,
        status: RunStatus,
        items_processed: Optional[int],
        error_message: Optional[str],
    ) -> bool:
        key = RedisKeys.pipeline_run(run_id)
        if not await self._redis.exists(key):
            logger.warning(f"Cannot finalize unknown pipeline run {run_id}")
            return False
        claimed = await self._redis.hsetnx(key, "completed_at", time.time())
        if not claimed:
            logger.info(f"Pipeline run {run_id} is already finalized; ignoring {status.value}")
            return False

        mapping: Dict[str, Any] = {"status": status.value}
        if items_processed is not None:
            mapping["items_processed"] = items_processed
        if error_message is not None:
            mapping["error_message"] = error_message
        await self._redis.hset(key, mapping=mapping)
        return True

    async def complete(self, run_id: str, items_processed: int = 0) -> bool:
        return await self._finalize(run_id, RunStatus.COMPLETED, items_processed, None)

    async def fail(
        self, run_id: str, error_message: str, items_processed: Optional[int] = None
    ) -> bool:
        return await self._finalize(run_id, RunStatus.FAILED, items_processed, error_message)

    async def _load(self, run_ids: List[Any]) -> List[PipelineRun]:
        runs = []
        for run_id in run_ids:
            run = await self.get(_decode(run_id))
            if run is not None:
                runs.append(run)
        return runs

    async def list_runs(
        self, pipeline_type: Optional[str] = None, limit: int = 20, offset: int = 0
    ) -> Tuple[List[PipelineRun], int]:
        """Runs ordered by ``started_at`` descending, plus the total count."""
        index = (
            RedisKeys.pipeline_runs_type_index(pipeline_type)
            if pipeline_type
            else RedisKeys.pipeline_runs_index()
        )
        total = await self._redis.zcard(index)
        ids = await self._redis.zrevrange(index, offset, offset + limit - 1)
        return await self._load(ids), total

    async def find_running(self, pipeline_type: Optional[str] = None) -> List[PipelineRun]:
        index = (
            RedisKeys.pipeline_runs_type_index(pipeline_type)
            if pipeline_type
            else RedisKeys.pipeline_runs_index()
        )
        runs = await self._load(await self._redis.zrevrange(index, 0, -1))
        return [r for r in runs if r.status == RunStatus.RUNNING]

    async def sweep_stale(self, max_age_seconds: float) -> int:
        """Fail running records started more than ``max_age_seconds`` ago."""
        cutoff = time.time() - max_age_seconds
        ids = await self._redis.zrangebyscore(RedisKeys.pipeline_runs_index(), 0, cutoff)
        swept = 0
        for run in await self._load(ids):
            if run.status == RunStatus.RUNNING and await self.fail(run.id, STALE_RUN_MESSAGE):
                swept += 1
        if swept:
            logger.warning(f"Marked {swept} stale pipeline runs as failed")
        return swept

    async def clear(self, pipeline_type: Optional[str] = None) -> int:
        """Delete terminal records (running records are kept)."""
        index = (
            RedisKeys.pipeline_runs_type_index(pipeline_type)
            if pipeline_type
            else RedisKeys.pipeline_runs_index()
        )
        removed = 0
        for run in await self._load(await self._redis.zrange(index, 0, -1)):
            if not run.is_terminal:
                continue
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(RedisKeys.pipeline_run(run.id))
                pipe.zrem(RedisKeys.pipeline_runs_index(), run.id)
                pipe.zrem(RedisKeys.pipeline_runs_type_index(run.pipeline_type), run.id)
                await pipe.execute()
            removed += 1
        logger.info(f"Cleared {removed} pipeline history records")
        return removed


class InMemoryHistoryStore:
    """Process-local history with the same semantics as ``PipelineHistoryStore``."""

    def __init__(self):
        self._runs: Dict[str, PipelineRun] = {}

    async def start(
        self,
        pipeline_type: str,
        trigger: RunTrigger = RunTrigger.MANUAL,
        schedule_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        run = PipelineRun(
            pipeline_type=pipeline_type,
            trigger=trigger,
            schedule_id=schedule_id,
            parameters=parameters or {},
        )
        self._runs[run.id] = run
        return run.model_copy()

    async def get(self, run_id: str) -> Optional[PipelineRun]:
        run = self._runs.get(run_id)
        return run.model_copy() if run else None

    async def _finalize(
        self,
        run_id: str,
        status: RunStatus,
        items_processed: Optional[int],
        error_message: Optional[str],
    ) -> bool:
        run = self._runs.get(run_id)
        if run is None or run.completed_at is not None:
            return False
        update: Dict[str, Any] = {
            "status": status,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        if items_processed is not None:
            update["items_processed"] = items_processed
        if error_message is not None:
            update["error_message"] = error_message
        self._runs[run_id] = run.model_copy(update=update)
        return True

    async def complete(self, run_id: str, items_processed: int = 0) -> bool:
        return await self._finalize(run_id, RunStatus.COMPLETED, items_processed, None)

    async def fail(
        self, run_id: str, error_message: str, items_processed: Optional[int] = None
    ) -> bool:
        return await self._finalize(run_id, RunStatus.FAILED, items_processed, error_message)

    def _ordered(self, pipeline_type: Optional[str]) -> List[PipelineRun]:
        runs = [r for r in self._runs.values() if not pipeline_type or r.pipeline_type == pipeline_type]
        # ULIDs sort by creation time, which breaks ties between equal timestamps
        return sorted(runs, key=lambda r: (r.started_at, r.id), reverse=True)

    async def list_runs(
        self, pipeline_type: Optional[str] = None, limit: int = 20, offset: int = 0
    ) -> Tuple[List[PipelineRun], int]:
        runs = self._ordered(pipeline_type)
        return [r.model_copy() for r in runs[offset : offset + limit]], len(runs)

    async def find_running(self, pipeline_type: Optional[str] = None) -> List[PipelineRun]:
        return [r.model_copy() for r in self._ordered(pipeline_type) if r.status == RunStatus.RUNNING]

    async def sweep_stale(self, max_age_seconds: float) -> int:
        cutoff = time.time() - max_age_seconds
        swept = 0
        for run in self._ordered(None):
            if run.status == RunStatus.RUNNING and _iso_to_ts(run.started_at) <= cutoff:
                if await self.fail(run.id, STALE_RUN_MESSAGE):
                    swept += 1
        return swept

    async def clear(self, pipeline_type: Optional[str] = None) -> int:
        doomed = [r.id for r in self._ordered(pipeline_type) if r.is_terminal]
        for run_id in doomed:
            del self._runs[run_id]
        return len(doomed)
