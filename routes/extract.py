"""
API endpoints for metadata extraction.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Query, Request

from models.responses import ExtractResponse, FormatsResponse
from services.errors import NotFoundOrExpired
from .params import extract_params, get_gateway, media_params

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/extract", response_model=ExtractResponse)
async def extract_video(request: Request,
                        url: Optional[str] = Query(None, description="Social video URL")):
    """
    Extract metadata for a supported video URL.

    Repeated calls within the cache lifetime are answered from memory, and
    concurrent calls for the same URL share one extraction. When warm-up is
    enabled the preview starts generating in the background.
    """
    params = extract_params(url)
    gateway = get_gateway(request)

    record = await gateway.extractor.get_metadata(params.url)
    if gateway.warmup:
        gateway.previews.warm(record.video_id)

    vid = quote(record.video_id, safe='')
    return ExtractResponse(
        **record.model_dump(),
        preview_url=f"/preview?vid={vid}",
        download_url=f"/download?vid={vid}",
        preview_duration=gateway.previews.duration,
    )


@router.get("/formats", response_model=FormatsResponse)
async def list_formats(request: Request,
                       vid: Optional[str] = Query(None, description="Video ID returned by /extract")):
    """Download qualities for a previously extracted video, best first."""
    params = media_params(vid)
    record = get_gateway(request).metadata.require(params.vid)
    if not record.available_formats:
        raise NotFoundOrExpired("No formats available", video_id=params.vid)
    return FormatsResponse(formats=record.available_formats)
