"""Response models for the Video Gateway API."""

from typing import Dict, List, Optional

from pydantic import BaseModel

from .records import FormatOption, VideoRecord


class ExtractResponse(VideoRecord):
    """Extraction result plus links to the media endpoints."""

    preview_url: str
    download_url: str
    preview_type: str = "video/mp4"
    preview_duration: float


class FormatsResponse(BaseModel):
    formats: List[FormatOption]


class LimiterStats(BaseModel):
    capacity: int
    in_use: int
    waiting: int
    peak: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    uptime_seconds: float
    dependencies: Dict[str, Optional[str]]
    metadata_entries: int
    preview_files: int
    download_files: int
    artifact_bytes: int
    pending_extractions: int
    pending_previews: int
    pending_downloads: int
    active_processes: int
    limiters: Dict[str, LimiterStats]


class CleanupResponse(BaseModel):
    message: str
    metadata_removed: int
    artifacts_removed: int
    bytes_freed: int
