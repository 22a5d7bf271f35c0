"""Entity store used by the pipelines.

Entities are plain dicts addressed by ``entity_type`` and a natural key.
Two implementations share the same semantics:

* ``InMemoryEntityStore`` for tests and one-off CLI runs.
* ``RedisEntityStore`` which keeps each entity as a JSON string and an ordering
  index (sorted set scored by ``updated_at``) per entity type.

Filters are equality matches on top-level fields. A filter value of ``False``
also matches records where the field is missing or ``None``, so flags such as
``is_processed`` / ``is_enriched`` work on freshly inserted rows.

Batches are returned ordered by ``updated_at`` and then by natural key.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from redis.asyncio import Redis

from github_explorer.core.keys import RedisKeys

logger = logging.getLogger(__name__)

# Entity types
RAW_MERGE_REQUESTS = "raw_merge_requests"
REPOSITORIES = "repositories"
CONTRIBUTORS = "contributors"
MERGE_REQUESTS = "merge_requests"
COMMITS = "commits"
CONTRIBUTOR_RANKINGS = "contributor_rankings"
SITEMAP_METADATA = "sitemap_metadata"

# Natural key of each entity type
ENTITY_KEYS: Dict[str, Union[str, Tuple[str, ...]]] = {
    RAW_MERGE_REQUESTS: "id",
    REPOSITORIES: "github_id",
    CONTRIBUTORS: "github_id",
    MERGE_REQUESTS: ("repository_github_id", "github_id"),
    COMMITS: "sha",
    CONTRIBUTOR_RANKINGS: "contributor_github_id",
    SITEMAP_METADATA: "entity_type",
}

EntityKey = Union[str, Sequence[str]]


class EntityStore(Protocol):
    """Storage collaborator consumed by pipeline stages."""

    async def count(self, entity_type: str, filter: Optional[Dict[str, Any]] = None) -> int:
        ...

    async def fetch_batch(
        self,
        entity_type: str,
        limit: int,
        offset: int = 0,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def upsert(self, entity_type: str, records: List[Dict[str, Any]], key: EntityKey) -> int:
        ...

    async def delete(self, entity_type: str, keys: List[str]) -> int:
        ...


def entity_key(record: Dict[str, Any], key: EntityKey) -> str:
    """Build the natural key string of ``record``.

    Composite keys are joined with ``:``.
    """
    fields = [key] if isinstance(key, str) else list(key)
    parts = []
    for field in fields:
        value = record.get(field)
        if value is None or value == "":
            raise ValueError(f"Record is missing key field '{field}'")
        parts.append(str(value))
    return ":".join(parts)


def matches_filter(record: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    if not filter:
        return True
    for field, expected in filter.items():
        actual = record.get(field)
        if expected is False:
            if actual not in (None, False):
                return False
        elif actual != expected:
            return False
    return True


def order_score(record: Dict[str, Any]) -> float:
    """Numeric ordering score derived from ``updated_at`` (0 when absent)."""
    value = record.get("updated_at")
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _merge(existing: Optional[Dict[str, Any]], record: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(existing or {})
    merged.update(record)
    return merged


class InMemoryEntityStore:
    """Process-local entity store."""

    def __init__(self, initial: Optional[Dict[str, Iterable[Dict[str, Any]]]] = None):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for entity_type, records in (initial or {}).items():
            key = ENTITY_KEYS.get(entity_type, "id")
            for record in records:
                self._data.setdefault(entity_type, {})[entity_key(record, key)] = dict(record)

    def _sorted(self, entity_type: str, filter: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = self._data.get(entity_type, {})
        matched = [(k, r) for k, r in rows.items() if matches_filter(r, filter)]
        matched.sort(key=lambda item: (order_score(item[1]), item[0]))
        return [dict(r) for _, r in matched]

    async def count(self, entity_type: str, filter: Optional[Dict[str, Any]] = None) -> int:
        return len(self._sorted(entity_type, filter))

    async def fetch_batch(
        self,
        entity_type: str,
        limit: int,
        offset: int = 0,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        return self._sorted(entity_type, filter)[offset : offset + limit]

    async def upsert(self, entity_type: str, records: List[Dict[str, Any]], key: EntityKey) -> int:
        # Resolve every key before touching state so a bad record leaves the batch unapplied
        keyed = [(entity_key(record, key), record) for record in records]
        table = self._data.setdefault(entity_type, {})
        staged = dict(table)
        for k, record in keyed:
            staged[k] = _merge(staged.get(k), record)
        self._data[entity_type] = staged
        return len(keyed)

    async def delete(self, entity_type: str, keys: List[str]) -> int:
        table = self._data.get(entity_type, {})
        return sum(1 for k in keys if table.pop(k, None) is not None)

    def all(self, entity_type: str) -> List[Dict[str, Any]]:
        """Return every record of ``entity_type`` in store order."""
        return self._sorted(entity_type, None)


class RedisEntityStore:
    """Entity store backed by Redis strings plus a sorted-set ordering index."""

    def __init__(self, redis_client: Redis, scan_chunk_size: int = 500):
        self._redis = redis_client
        self._chunk = scan_chunk_size

    async def _load(self, entity_type: str, members) -> List[Dict[str, Any]]:
        if not members:
            return []
        keys = [
            RedisKeys.entity(entity_type, m.decode() if isinstance(m, bytes) else m)
            for m in members
        ]
        values = await self._redis.mget(keys)
        return [json.loads(raw) for raw in values if raw is not None]

    async def _iter_records(self, entity_type: str, filter: Optional[Dict[str, Any]]):
        index_key = RedisKeys.entity_index(entity_type)
        start = 0
        while True:
            members = await self._redis.zrange(index_key, start, start + self._chunk - 1)
            if not members:
                return
            for record in await self._load(entity_type, members):
                if matches_filter(record, filter):
                    yield record
            start += self._chunk

    async def count(self, entity_type: str, filter: Optional[Dict[str, Any]] = None) -> int:
        if not filter:
            return await self._redis.zcard(RedisKeys.entity_index(entity_type))
        total = 0
        async for _ in self._iter_records(entity_type, filter):
            total += 1
        return total

    async def fetch_batch(
        self,
        entity_type: str,
        limit: int,
        offset: int = 0,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        if not filter:
            # Unfiltered pages slice the ordering index directly
            members = await self._redis.zrange(
                RedisKeys.entity_index(entity_type), offset, offset + limit - 1
            )
            return await self._load(entity_type, members)

        batch: List[Dict[str, Any]] = []
        skipped = 0
        async for record in self._iter_records(entity_type, filter):
            if skipped < offset:
                skipped += 1
                continue
            batch.append(record)
            if len(batch) >= limit:
                break
        return batch

    async def upsert(self, entity_type: str, records: List[Dict[str, Any]], key: EntityKey) -> int:
        if not records:
            return 0
        keyed = [(entity_key(record, key), record) for record in records]
        redis_keys = [RedisKeys.entity(entity_type, k) for k, _ in keyed]
        existing = await self._redis.mget(redis_keys)

        merged: Dict[str, Dict[str, Any]] = {}
        for (k, record), raw in zip(keyed, existing):
            base = merged.get(k)
            if base is None and raw is not None:
                base = json.loads(raw)
            merged[k] = _merge(base, record)

        async with self._redis.pipeline(transaction=True) as pipe:
            for k, record in merged.items():
                pipe.set(RedisKeys.entity(entity_type, k), json.dumps(record, default=str))
            pipe.zadd(
                RedisKeys.entity_index(entity_type),
                {k: order_score(record) for k, record in merged.items()},
            )
            await pipe.execute()

        logger.debug(f"Upserted {len(merged)} {entity_type} records")
        return len(keyed)

    async def delete(self, entity_type: str, keys: List[str]) -> int:
        """Remove records by natural key string; returns how many existed."""
        if not keys:
            return 0
        async with self._redis.pipeline(transaction=True) as pipe:
            for k in keys:
                pipe.delete(RedisKeys.entity(entity_type, k))
            pipe.zrem(RedisKeys.entity_index(entity_type), *keys)
            results = await pipe.execute()
        removed = sum(int(r) for r in results[:-1])
        logger.debug(f"Deleted {removed} {entity_type} records")
        return removed
