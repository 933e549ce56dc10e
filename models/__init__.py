"""Models package for records, request and response schemas."""

from .records import Platform, FormatOption, VideoRecord
from .requests import ExtractRequest, MediaRequest
from .responses import (
    ExtractResponse, FormatsResponse, HealthResponse, LimiterStats, CleanupResponse
)

__all__ = [
    'Platform',
    'FormatOption',
    'VideoRecord',
    'ExtractRequest',
    'MediaRequest',
    'ExtractResponse',
    'FormatsResponse',
    'HealthResponse',
    'LimiterStats',
    'CleanupResponse',
]
