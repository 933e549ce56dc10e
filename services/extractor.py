import re
import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import config
from models.records import FormatOption, Platform, VideoRecord
from .errors import (
    GatewayError, ProcessEmptyOutput, ProcessError, UnsupportedPlatform, promote
)
from .limiter import ConcurrencyLimiter
from .metadata_cache import MetadataCache
from .platforms import PlatformRegistry
from .process_runner import ProcessRunner

logger = logging.getLogger(__name__)

QUALITY_LABELS = ((2160, "4K"), (1440, "2K"), (1080, "Full HD"), (720, "HD"))
_NOTE_RESOLUTION = re.compile(r'^(?:\d+p|\d+x\d+)$')


@dataclass
class SelectedFormat:
    resolution: str
    size_bytes: Optional[int]
    url: Optional[str]


def _has_video(fmt: Dict[str, Any]) -> bool:
    return fmt.get('vcodec') != 'none'


def _has_audio(fmt: Dict[str, Any]) -> bool:
    return fmt.get('acodec') != 'none'


def _size_of(fmt: Dict[str, Any]) -> Optional[int]:
    size = fmt.get('filesize') or fmt.get('filesize_approx')
    try:
        return int(size) if size else None
    except (TypeError, ValueError):
        return None


def _resolution_of(fmt: Dict[str, Any]) -> str:
    width, height = fmt.get('width'), fmt.get('height')
    if width and height:
        return f"{width}x{height}"
    if height:
        return f"{height}p"
    note = fmt.get('format_note') or fmt.get('resolution') or ''
    if isinstance(note, str) and _NOTE_RESOLUTION.match(note):
        return note
    return "unknown"


def _from_format(fmt: Dict[str, Any]) -> SelectedFormat:
    return SelectedFormat(resolution=_resolution_of(fmt), size_bytes=_size_of(fmt), url=fmt.get('url'))


def select_representative_format(info: Dict[str, Any]) -> SelectedFormat:
    """
    Pick the format that describes the video.

    A merged selection (separate video and audio components) reports the
    video component's frame size and the sum of both sizes; the size stays
    unknown if any component's size is unknown.
    """
    requested = info.get('requested_formats')
    if requested:
        video = next((f for f in requested if _has_video(f) and f.get('height')), requested[0])
        sizes = [_size_of(f) for f in requested]
        total = sum(sizes) if all(size is not None for size in sizes) else None
        return SelectedFormat(resolution=_resolution_of(video), size_bytes=total, url=video.get('url'))

    formats = info.get('formats') or []
    if (_has_video(info) and _has_audio(info)) or not formats:
        return _from_format(info)

    combined = [f for f in formats if _has_video(f) and _has_audio(f) and f.get('height')]
    if combined:
        best = max(combined, key=lambda f: (f.get('height') or 0, f.get('tbr') or 0))
        return _from_format(best)
    return _from_format(info)


def summarize_formats(formats: Optional[List[Dict[str, Any]]]) -> List[FormatOption]:
    """One option per quality level, best first, preferring formats with audio."""
    best: Dict[int, tuple] = {}
    for fmt in formats or []:
        if fmt.get('vcodec') in (None, 'none') or not fmt.get('height') or not fmt.get('format_id'):
            continue
        height = fmt['height']
        width = fmt.get('width') or 0
        # shorter side, so portrait videos get the same quality names
        dimension = min(width, height) if width else height
        has_audio = fmt.get('acodec') not in (None, 'none')
        bitrate = fmt.get('tbr') or fmt.get('vbr') or 0

        existing = best.get(dimension)
        if existing is not None:
            _, existing_bitrate, existing_option = existing
            if existing_option.has_audio and not has_audio:
                continue
            if has_audio == existing_option.has_audio and bitrate <= existing_bitrate:
                continue

        label = next((name for floor, name in QUALITY_LABELS if dimension >= floor), "SD")
        option = FormatOption(
            format_id=str(fmt['format_id']),
            ext=fmt.get('ext') or 'mp4',
            quality=f"{dimension}p",
            has_audio=has_audio,
            filesize=_size_of(fmt),
            label=label,
        )
        best[dimension] = (dimension, bitrate, option)

    return [entry[2] for entry in sorted(best.values(), key=lambda entry: entry[0], reverse=True)]


def parse_tool_output(text: str) -> Dict[str, Any]:
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            info = json.loads(line)
        except json.JSONDecodeError:
            raise ProcessEmptyOutput("Unparsable extractor output", details=line[:200])
        if isinstance(info, dict):
            return info
    raise ProcessEmptyOutput("Empty extractor output")


def build_video_record(info: Dict[str, Any], platform: Platform, url: str) -> VideoRecord:
    video_id = info.get('id')
    if not video_id:
        raise ProcessEmptyOutput("Extractor output has no video id")

    try:
        duration = max(float(info.get('duration') or 0), 0.0)
    except (TypeError, ValueError):
        duration = 0.0

    selected = select_representative_format(info)
    return VideoRecord(
        platform=platform,
        video_id=str(video_id),
        original_url=url,
        title=info.get('title') or "Unknown Title",
        author=info.get('uploader') or info.get('channel') or info.get('creator') or "Unknown Author",
        thumbnail_url=info.get('thumbnail'),
        duration_seconds=duration,
        resolution=selected.resolution,
        size_bytes=selected.size_bytes,
        container_format=info.get('ext') or "mp4",
        available_formats=summarize_formats(info.get('formats')),
        direct_media_url=selected.url,
    )


class Extractor:
    """Produces VideoRecords by running the extraction tool in metadata-only mode."""

    def __init__(self, registry: PlatformRegistry, runner: ProcessRunner, limiter: ConcurrencyLimiter,
                 cache: MetadataCache, ytdlp_path: str = "yt-dlp", timeout: Optional[float] = None,
                 attempts: Optional[int] = None, retry_delay: Optional[float] = None):
        self.registry = registry
        self.runner = runner
        self.limiter = limiter
        self.cache = cache
        self.ytdlp_path = ytdlp_path
        self.timeout = timeout if timeout is not None else config.EXTRACT_TIMEOUT
        self.attempts = max(1, attempts if attempts is not None else config.EXTRACT_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else config.RETRY_DELAY

    def classify_or_raise(self, url: str) -> Platform:
        platform = self.registry.classify(url)
        if platform is None:
            raise UnsupportedPlatform("Unsupported platform", details=f"No extractor for {url}")
        return platform

    async def get_metadata(self, url: str) -> VideoRecord:
        """Cached record for the URL, extracting it on a miss."""
        self.classify_or_raise(url)
        return await self.cache.get_or_compute(url, self.extract)

    async def extract(self, url: str) -> VideoRecord:
        platform = self.classify_or_raise(url)
        arguments = self.registry.arguments_for(platform)
        args = [
            url,
            "--dump-json",
            "--no-warnings",
            "--no-playlist",
            "--skip-download",
            *arguments.extra_flags,
        ]

        logger.info(f"📥 Extracting: {url} [{platform.value}]")
        info = await self._with_retries(args)
        record = build_video_record(info, platform, url)
        logger.info(f"Extracted {record.video_id}: '{record.title}' ({record.resolution}, {record.duration_seconds:g}s)")
        return record

    async def _dump_json(self, args: List[str]) -> Dict[str, Any]:
        async with self.limiter.slot():
            result = await self.runner.run(self.ytdlp_path, args, timeout=self.timeout, name="yt-dlp")
        return parse_tool_output(result.text)

    async def _with_retries(self, args: List[str]) -> Dict[str, Any]:
        for attempt in range(1, self.attempts + 1):
            try:
                return await self._dump_json(args)
            except ProcessError as e:
                error: GatewayError = promote(e)
                if not error.retryable or attempt == self.attempts:
                    if error is e:
                        raise
                    raise error from e
                logger.warning(f"⚠️ Attempt {attempt}/{self.attempts} failed: {e}")
                await asyncio.sleep(self.retry_delay * attempt)
