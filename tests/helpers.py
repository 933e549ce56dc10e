"""
Shared fixtures for the test suite: canned tool output and a gateway
wired to temporary directories.
"""

import json
import sys
import tempfile
from typing import Any, Dict

from models.records import FormatOption, Platform, VideoRecord
from services.gateway import Gateway
from services.platforms import PlatformRegistry
from services.process_runner import ProcessResult

PYTHON = sys.executable

YOUTUBE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

SAMPLE_INFO: Dict[str, Any] = {
    "id": "dQw4w9WgXcQ",
    "title": "Sample Clip",
    "uploader": "Sample Channel",
    "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg",
    "duration": 212,
    "ext": "mp4",
    "width": 1280,
    "height": 720,
    "vcodec": "avc1.64001F",
    "acodec": "mp4a.40.2",
    "filesize": 12345678,
    "url": "https://media.example/direct.mp4",
    "formats": [
        {"format_id": "18", "ext": "mp4", "width": 640, "height": 360,
         "vcodec": "avc1.42001E", "acodec": "mp4a.40.2", "tbr": 500, "filesize": 4000000},
        {"format_id": "22", "ext": "mp4", "width": 1280, "height": 720,
         "vcodec": "avc1.64001F", "acodec": "mp4a.40.2", "tbr": 1500, "filesize": 12345678},
        {"format_id": "137", "ext": "mp4", "width": 1920, "height": 1080,
         "vcodec": "avc1.640028", "acodec": "none", "tbr": 4000, "filesize": 50000000},
    ],
}


def tool_output(**overrides) -> ProcessResult:
    """Successful ``--dump-json`` result for SAMPLE_INFO with overrides applied."""
    info = dict(SAMPLE_INFO, **overrides)
    return ProcessResult(stdout=json.dumps(info).encode(), stderr=b"", exit_code=0)


def sample_record(**overrides) -> VideoRecord:
    values = dict(
        platform=Platform.YOUTUBE,
        video_id="dQw4w9WgXcQ",
        original_url=YOUTUBE_URL,
        title="Sample Clip",
        author="Sample Channel",
        duration_seconds=212,
        resolution="1280x720",
        available_formats=[
            FormatOption(format_id="22", quality="720p", has_audio=True, label="HD"),
            FormatOption(format_id="137", quality="1080p", has_audio=False, label="Full HD"),
        ],
    )
    values.update(overrides)
    return VideoRecord(**values)


def make_registry(cookies_dir: str = None) -> PlatformRegistry:
    return PlatformRegistry(cookies_dir=cookies_dir or tempfile.gettempdir(), proxy_url="")


def make_gateway(cache_dir: str, **kwargs) -> Gateway:
    """Gateway with no retry delays, no warm-up and tools reported present."""
    kwargs.setdefault("registry", make_registry(cache_dir))
    kwargs.setdefault("dependencies", {"yt_dlp": "2024.01.01", "ffmpeg": "ffmpeg version 6.0"})
    kwargs.setdefault("warmup", False)
    kwargs.setdefault("extractor", {"retry_delay": 0})
    kwargs.setdefault("previews", {"retry_delay": 0})
    return Gateway(cache_dir=cache_dir, **kwargs)
