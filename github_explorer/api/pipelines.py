"""Manual pipeline control, run history and pending-work counts."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from github_explorer.api.dependencies import get_runtime
from github_explorer.core.operations import OperationResult, PipelineAction
from github_explorer.core.runtime import PipelineRuntime
from github_explorer.pipelines.registry import UnknownPipelineError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/pipelines", tags=["pipelines"])


class PipelineActionRequest(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Pipeline parameters")


# ============================================================================
# History
# ============================================================================


@router.get("/history")
async def list_history(
    pipeline_type: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    runtime: PipelineRuntime = Depends(get_runtime),
):
    """Pipeline runs, newest first."""
    try:
        runs, total = await runtime.history.list_runs(pipeline_type, limit=limit, offset=offset)
        return {"data": [run.to_response() for run in runs], "count": total}
    except Exception as e:
        logger.error(f"Failed to list pipeline history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list pipeline history: {str(e)}",
        )


@router.get("/history/{run_id}")
async def get_history(run_id: str, runtime: PipelineRuntime = Depends(get_runtime)):
    run = await runtime.history.get(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Pipeline run {run_id} not found"
        )
    return run.to_response()


@router.delete("/history")
async def clear_history(
    pipeline_type: Optional[str] = None, runtime: PipelineRuntime = Depends(get_runtime)
):
    """Delete finished runs; running records are kept."""
    removed = await runtime.history.clear(pipeline_type)
    return {"deleted": removed}


@router.post("/history/cleanup")
async def cleanup_history(runtime: PipelineRuntime = Depends(get_runtime)):
    """Fail running records that exceeded the stale threshold."""
    swept = await runtime.history.sweep_stale(runtime.config.history_stale_after_seconds)
    return {"marked_failed": swept}


# ============================================================================
# Counts
# ============================================================================


@router.get("/entity-counts")
async def entity_counts(runtime: PipelineRuntime = Depends(get_runtime)):
    return await runtime.status.entity_counts()


@router.get("/{pipeline_type}/item-count")
async def item_count(pipeline_type: str, runtime: PipelineRuntime = Depends(get_runtime)):
    """Items the next run of the pipeline would process."""
    try:
        count = await runtime.status.item_count(pipeline_type)
    except UnknownPipelineError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"pipeline_type": pipeline_type, "count": count}


# ============================================================================
# Start / stop / restart
# ============================================================================


@router.post("/{pipeline_type}/{action}", response_model=OperationResult)
async def pipeline_action(
    pipeline_type: str,
    action: PipelineAction,
    request: Optional[PipelineActionRequest] = None,
    runtime: PipelineRuntime = Depends(get_runtime),
):
    """Start, stop or restart a pipeline."""
    parameters = request.parameters if request else {}
    try:
        result = await runtime.operations.execute(action.value, pipeline_type, parameters)
    except UnknownPipelineError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to {action.value} {pipeline_type}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action.value} pipeline: {str(e)}",
        )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message)
    return result
