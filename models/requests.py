"""Request models for the Video Gateway API."""

import re
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

_FORMAT_ID = re.compile(r'^[\w.\-]+$')


class ExtractRequest(BaseModel):
    """Query parameters of /extract."""

    url: str = Field(..., description="Social video URL")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        v = v.strip()
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("Invalid URL format")
        return v


class MediaRequest(BaseModel):
    """Query parameters of /preview, /download and /formats."""

    vid: str = Field(..., min_length=1, max_length=128, description="Video ID returned by /extract")
    format: Optional[str] = Field(None, max_length=64, description="Format ID from /formats (download only)")

    @field_validator('vid', 'format')
    @classmethod
    def strip_whitespace(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        return v

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        # format IDs end up in the selector passed to the extraction tool
        if v is not None and not _FORMAT_ID.match(v):
            raise ValueError("Invalid format ID")
        return v
