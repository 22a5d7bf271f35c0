"""Main FastAPI application for GitHub Explorer pipelines."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from github_explorer.api.health import router as health_router
from github_explorer.api.notifications import router as notifications_router
from github_explorer.api.pipelines import router as pipelines_router
from github_explorer.api.schedules import router as schedules_router
from github_explorer.api.sitemap import router as sitemap_router
from github_explorer.core.config import settings
from github_explorer.core.redis import initialize_redis
from github_explorer.core.runtime import PipelineRuntime

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize Redis, then build and start the pipeline runtime."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    logger.info(f"Starting up {settings.app_name}...")

    runtime: Optional[PipelineRuntime] = getattr(app.state, "runtime", None)
    if runtime is None:
        redis_status = await initialize_redis()
        logger.info(f"Redis infrastructure status: {redis_status}")
        try:
            from github_explorer.core.docket_tasks import register_pipeline_tasks

            await register_pipeline_tasks()
        except Exception as e:
            logger.warning(f"Failed to register pipeline tasks: {e}")
        runtime = PipelineRuntime.create()
        app.state.runtime = runtime

    try:
        await runtime.start()
        logger.info("Startup completed successfully")
    except Exception as e:
        # Keep serving health checks even when the scheduler could not start
        logger.error(f"Startup had issues but continuing: {e}")

    yield

    logger.info("Shutting down FastAPI application...")
    await runtime.stop()


def create_app(runtime: Optional[PipelineRuntime] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Data pipelines, scheduler and sitemap generation for GitHub Explorer",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.include_router(health_router, tags=["Health"])
    app.include_router(schedules_router)
    app.include_router(pipelines_router)
    app.include_router(notifications_router)
    app.include_router(sitemap_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "github_explorer.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
