"""Health check endpoints."""

import logging

from docket import Docket
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from github_explorer.core.config import settings
from github_explorer.core.redis import get_redis_url, test_redis_connection

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
@router.head("/")
async def root_health_check():
    """Simple, fast health check for load balancers."""
    return f"{settings.app_name} is running"


@router.get("/api/v1/health", response_model=None)
async def detailed_health_check(request: Request) -> Response:
    """Redis, worker and scheduler status."""
    redis_ok = await test_redis_connection()

    workers_available = False
    if redis_ok:
        try:
            async with Docket(url=get_redis_url(), name=settings.task_queue_name) as docket:
                workers_available = len(await docket.workers()) > 0
            if not workers_available:
                logger.warning(
                    "No workers currently available - manual pipeline runs will not be processed. "
                    "Start one with: github-explorer worker"
                )
        except Exception as e:
            logger.warning(f"Worker status check failed: {e}")

    runtime = getattr(request.app.state, "runtime", None)
    components = {
        "redis_connection": "available" if redis_ok else "unavailable",
        "workers": "available" if workers_available else "unavailable",
        "scheduler": "available" if runtime is not None and runtime.started else "unavailable",
    }

    if all(v == "available" for v in components.values()):
        status, status_code = "healthy", 200
    elif redis_ok:
        status, status_code = "degraded", 200
    else:
        status, status_code = "unhealthy", 503

    return JSONResponse(
        status_code=status_code,
        content={"status": status, "components": components, "service": settings.app_name},
    )
