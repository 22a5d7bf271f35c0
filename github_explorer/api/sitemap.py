"""Sitemap status and URL validation endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from github_explorer.api.dependencies import get_runtime
from github_explorer.core.runtime import PipelineRuntime
from github_explorer.pipelines.sitemap.validation import validate_sitemap_urls

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sitemap", tags=["sitemap"])


class ValidateRequest(BaseModel):
    timeout: float = Field(10.0, gt=0, description="Per-URL request timeout in seconds")


@router.get("/status")
async def sitemap_status(runtime: PipelineRuntime = Depends(get_runtime)):
    """Files in the output directory with their URL counts."""
    return runtime.sitemap_storage.get_status()


@router.post("/validate")
async def validate_sitemap(
    request: Optional[ValidateRequest] = None,
    runtime: PipelineRuntime = Depends(get_runtime),
):
    """Issue a HEAD request for every URL in the sitemap."""
    timeout = request.timeout if request else 10.0
    try:
        return await validate_sitemap_urls(
            runtime.sitemap_storage, runtime.config.base_url, timeout=timeout
        )
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sitemap generated yet")
    except Exception as e:
        logger.error(f"Sitemap validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sitemap validation failed: {str(e)}",
        )
