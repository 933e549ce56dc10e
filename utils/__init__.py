"""Utils package for utility functions."""

from .tool_paths import (
    get_ffmpeg_path, get_ytdlp_path, get_ffmpeg_version, get_ytdlp_version, check_dependencies
)
from .filenames import attachment_filename, cache_safe_id

__all__ = [
    'get_ffmpeg_path',
    'get_ytdlp_path',
    'get_ffmpeg_version',
    'get_ytdlp_version',
    'check_dependencies',
    'attachment_filename',
    'cache_safe_id',
]
