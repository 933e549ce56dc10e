"""
API endpoints for service information and maintenance.
"""

import logging

from fastapi import APIRouter, Request

from models.records import Platform
from models.responses import CleanupResponse
from .params import get_gateway

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Video Gateway API",
        "version": "1.0.0",
        "platforms": [platform.value for platform in Platform],
        "endpoints": ["/extract", "/formats", "/preview", "/download", "/health", "/cleanup"],
        "docs": "/docs",
    }


@router.post("/cleanup", response_model=CleanupResponse)
async def trigger_cleanup(request: Request):
    """Run a cache sweep now instead of waiting for the janitor."""
    result = await get_gateway(request).sweep()
    logger.info(f"Manual cleanup removed {result.artifacts_removed} files")
    return CleanupResponse(
        message="Cleanup completed successfully",
        metadata_removed=result.metadata_removed,
        artifacts_removed=result.artifacts_removed,
        bytes_freed=result.bytes_freed,
    )
