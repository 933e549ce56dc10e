"""
API endpoints for previews and downloads.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from services.errors import InvalidRequest
from utils.filenames import attachment_filename
from .params import get_gateway, media_params

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/preview")
async def get_preview(request: Request,
                      vid: Optional[str] = Query(None, description="Video ID returned by /extract"),
                      live: bool = Query(False, description="Stream while transcoding instead of serving the cached clip")):
    """Short muted MP4 preview, served with byte-range support."""
    params = media_params(vid)
    gateway = get_gateway(request)

    if live:
        record = gateway.metadata.require(params.vid)
        pipeline = await gateway.previews.open_preview_stream(params.vid)
        return await gateway.streams.serve_live(
            request, pipeline, attachment_filename(f"{record.title}_preview"), disposition="inline",
        )

    artifact = await gateway.previews.get_or_generate_preview(params.vid)
    return await gateway.streams.serve_file(artifact.path, request.headers.get("range"))


@router.get("/download")
async def download_video(request: Request,
                         vid: Optional[str] = Query(None, description="Video ID returned by /extract"),
                         format: Optional[str] = Query(None, description="Format ID from /formats")):
    """Full video as an attachment, streamed live or from the download cache."""
    params = media_params(vid, format)
    gateway = get_gateway(request)
    record = gateway.metadata.require(params.vid)

    if params.format and record.available_formats and record.find_format(params.format) is None:
        raise InvalidRequest("Unknown format", video_id=params.vid, format=params.format)

    filename = attachment_filename(record.title)
    if gateway.downloads.caches_files:
        artifact = await gateway.downloads.get_or_download(record, params.format)
        return await gateway.streams.serve_file(
            artifact.path, request.headers.get("range"), filename=filename, disposition="attachment",
        )

    process = await gateway.downloads.open_stream(record, params.format)
    return await gateway.streams.serve_live(request, process, filename)
