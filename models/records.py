"""Core records shared by services and routes."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Supported source sites."""

    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"


class FormatOption(BaseModel):
    """One selectable download quality."""

    format_id: str
    ext: str = "mp4"
    quality: str
    has_audio: bool = False
    filesize: Optional[int] = None
    label: str


class VideoRecord(BaseModel):
    """Canonical metadata for one source video."""

    platform: Platform
    video_id: str
    original_url: str
    title: str = "Unknown Title"
    author: str = "Unknown Author"
    thumbnail_url: Optional[str] = None
    duration_seconds: float = Field(default=0, ge=0)
    resolution: str = "unknown"
    size_bytes: Optional[int] = None
    container_format: str = "mp4"
    available_formats: List[FormatOption] = Field(default_factory=list)
    # Short-lived upstream URL, only used to feed the transcoder
    direct_media_url: Optional[str] = Field(default=None, exclude=True)

    def find_format(self, format_id: str) -> Optional[FormatOption]:
        for option in self.available_formats:
            if option.format_id == format_id:
                return option
        return None
