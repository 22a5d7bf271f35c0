"""Schedule management API endpoints."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from github_explorer.api.dependencies import get_runtime
from github_explorer.core.runtime import PipelineRuntime
from github_explorer.core.scheduler import InvalidScheduleError, ScheduleNotFoundError
from github_explorer.core.schedules import DEFAULT_TIMEZONE, Schedule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/schedules", tags=["schedules"])


class CreateScheduleRequest(BaseModel):
    """Request model for creating a schedule."""

    name: str = Field(..., description="Human-readable schedule name")
    description: Optional[str] = Field(None, description="Schedule description")
    pipeline_type: str = Field(..., description="Pipeline to run")
    cron_expression: str = Field(..., description="Five-field cron expression")
    timezone: str = Field(DEFAULT_TIMEZONE, description="IANA timezone the cron is evaluated in")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Pipeline parameters")
    is_active: bool = Field(True, description="Whether the schedule is active")


class UpdateScheduleRequest(BaseModel):
    """Request model for updating a schedule."""

    name: Optional[str] = Field(None, description="Human-readable schedule name")
    description: Optional[str] = Field(None, description="Schedule description")
    cron_expression: Optional[str] = Field(None, description="Five-field cron expression")
    timezone: Optional[str] = Field(None, description="IANA timezone")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Pipeline parameters")
    is_active: Optional[bool] = Field(None, description="Whether the schedule is active")


def _not_found(schedule_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found"
    )


@router.get("/", response_model=List[Schedule])
async def list_schedules(
    pipeline_type: Optional[str] = None, runtime: PipelineRuntime = Depends(get_runtime)
):
    """List all schedules, optionally for one pipeline type."""
    return runtime.scheduler.get_schedules(pipeline_type)


@router.post("/", response_model=Schedule, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: CreateScheduleRequest, runtime: PipelineRuntime = Depends(get_runtime)
):
    """Create a new schedule."""
    try:
        return await runtime.scheduler.create_schedule(**request.model_dump())
    except InvalidScheduleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create schedule: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create schedule: {str(e)}",
        )


@router.get("/{schedule_id}", response_model=Schedule)
async def get_schedule(schedule_id: str, runtime: PipelineRuntime = Depends(get_runtime)):
    """Get a specific schedule."""
    try:
        return runtime.scheduler.get_schedule(schedule_id)
    except ScheduleNotFoundError:
        raise _not_found(schedule_id)


@router.put("/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: str,
    request: UpdateScheduleRequest,
    runtime: PipelineRuntime = Depends(get_runtime),
):
    """Update a schedule."""
    try:
        return await runtime.scheduler.update_schedule(
            schedule_id, **request.model_dump(exclude_unset=True)
        )
    except ScheduleNotFoundError:
        raise _not_found(schedule_id)
    except InvalidScheduleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update schedule {schedule_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update schedule: {str(e)}",
        )


@router.delete("/{schedule_id}")
async def delete_schedule(schedule_id: str, runtime: PipelineRuntime = Depends(get_runtime)):
    """Delete a schedule."""
    try:
        await runtime.scheduler.delete_schedule(schedule_id)
        return {"message": f"Schedule {schedule_id} deleted successfully"}
    except ScheduleNotFoundError:
        raise _not_found(schedule_id)
    except Exception as e:
        logger.error(f"Failed to delete schedule {schedule_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete schedule: {str(e)}",
        )


@router.post("/{schedule_id}/trigger")
async def trigger_schedule(schedule_id: str, runtime: PipelineRuntime = Depends(get_runtime)):
    """Run a schedule now; skipped when it is already executing."""
    try:
        started = await runtime.scheduler.trigger_now(schedule_id)
    except ScheduleNotFoundError:
        raise _not_found(schedule_id)
    return {
        "schedule_id": schedule_id,
        "triggered": started,
        "message": "Schedule triggered" if started else "Schedule is already executing",
    }
