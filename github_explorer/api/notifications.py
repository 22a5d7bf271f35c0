"""Notification feed endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from github_explorer.api.dependencies import get_runtime
from github_explorer.core.notifications import NotificationNotFoundError
from github_explorer.core.runtime import PipelineRuntime

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[str] = None,
    level: Optional[str] = None,
    is_read: Optional[bool] = None,
    runtime: PipelineRuntime = Depends(get_runtime),
):
    return runtime.notifications.get_notifications(
        limit=limit, offset=offset, type=type, level=level, is_read=is_read
    )


@router.post("/read-all")
async def mark_all_read(runtime: PipelineRuntime = Depends(get_runtime)):
    return {"marked": runtime.notifications.mark_all_as_read()}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, runtime: PipelineRuntime = Depends(get_runtime)):
    try:
        return runtime.notifications.mark_as_read(notification_id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
