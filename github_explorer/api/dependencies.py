"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from github_explorer.core.runtime import PipelineRuntime


def get_runtime(request: Request) -> PipelineRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline runtime is not initialized",
        )
    return runtime
