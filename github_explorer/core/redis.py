"""Redis connection management - no caching to avoid event loop issues."""

import logging
from typing import Optional

from redis.asyncio import Redis
from redisvl.index.index import AsyncSearchIndex
from redisvl.schema import IndexSchema

from github_explorer.core.config import settings
from github_explorer.core.keys import RedisKeys

logger = logging.getLogger(__name__)

# Index names
SCHEDULES_INDEX = RedisKeys.PREFIX_SCHEDULES

# Schema definitions
SCHEDULES_SCHEMA = {
    "index": {
        "name": SCHEDULES_INDEX,
        "prefix": f"{SCHEDULES_INDEX}:",
        "storage_type": "hash",
    },
    "fields": [
        {"name": "name", "type": "text"},
        {"name": "description", "type": "text"},
        {"name": "pipeline_type", "type": "tag"},
        {"name": "is_active", "type": "tag"},
        {"name": "created_at", "type": "numeric"},
        {"name": "updated_at", "type": "numeric"},
        {"name": "last_run_at", "type": "numeric"},
        {"name": "next_run_at", "type": "numeric"},
    ],
}


def get_redis_url() -> str:
    """Return the configured Redis URL with the password inlined when needed."""
    redis_url = settings.redis_url.get_secret_value()
    redis_password = settings.redis_password.get_secret_value() if settings.redis_password else None
    if redis_password and "@" not in redis_url:
        # Insert password into URL: redis://localhost -> redis://:password@localhost
        redis_url = redis_url.replace("redis://", f"redis://:{redis_password}@")
    return redis_url


def get_redis_client(url: Optional[str] = None) -> Redis:
    """Get Redis client (creates fresh client to avoid event loop issues)."""
    redis_url = url or settings.redis_url.get_secret_value()
    redis_password = settings.redis_password.get_secret_value() if settings.redis_password else None
    return Redis.from_url(
        url=redis_url,
        password=redis_password,
        decode_responses=False,  # Keep as bytes for RedisVL compatibility
    )


async def get_schedules_index() -> AsyncSearchIndex:
    """Get pipeline schedules index (creates fresh to avoid event loop issues)."""
    redis_client = Redis.from_url(get_redis_url(), decode_responses=False)
    schema = IndexSchema.from_dict(SCHEDULES_SCHEMA)
    return AsyncSearchIndex(schema=schema, redis_client=redis_client)


async def test_redis_connection(url: Optional[str] = None) -> bool:
    """Test Redis connection health.

    Args:
        url: Optional Redis URL to test. If not provided, uses default from settings.

    Returns:
        True if connection successful, False otherwise.
    """
    try:
        client = get_redis_client(url=url)
        await client.ping()
        await client.aclose()
        return True
    except Exception as e:
        logger.error(f"Redis connection test failed: {e}")
        return False


async def create_indices() -> bool:
    """Create search indices if they don't exist."""
    try:
        schedules_index = await get_schedules_index()
        if not await schedules_index.exists():
            await schedules_index.create()
            logger.debug(f"Created schedules index: {SCHEDULES_INDEX}")
        else:
            logger.debug(f"Schedules index already exists: {SCHEDULES_INDEX}")
        return True
    except Exception as e:
        logger.error(f"Failed to create indices: {e}")
        return False


async def initialize_docket() -> bool:
    """Initialize Docket task queue infrastructure."""
    try:
        from docket import Docket

        async with Docket(url=get_redis_url(), name=settings.task_queue_name) as docket:
            # Creates the necessary Redis structures if they don't exist
            await docket.workers()
            logger.info("Docket infrastructure initialized successfully")
            return True
    except Exception as e:
        logger.error(f"Failed to initialize Docket: {e}")
        return False


async def initialize_redis() -> dict:
    """Initialize Redis infrastructure and return status."""
    status = {}

    redis_ok = await test_redis_connection()
    status["redis_connection"] = "available" if redis_ok else "unavailable"

    if redis_ok:
        indices_created = await create_indices()
        status["indices_created"] = "available" if indices_created else "unavailable"
        docket_ok = await initialize_docket()
        status["docket_infrastructure"] = "available" if docket_ok else "unavailable"
    else:
        status["indices_created"] = "unavailable"
        status["docket_infrastructure"] = "unavailable"

    return status
