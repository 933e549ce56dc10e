"""
Full-quality downloads, either piped straight through or cached on disk.
"""

import asyncio
import logging
import os
from typing import List, Optional

import config
from models.records import VideoRecord
from utils.filenames import cache_safe_id
from .artifact_cache import ArtifactCache, ArtifactFile, remove_file
from .errors import InvalidRequest, ProcessEmptyOutput
from .inflight import InFlight
from .limiter import ConcurrencyLimiter
from .metadata_cache import MetadataCache
from .platforms import PlatformRegistry
from .process_runner import ProcessRunner, StreamingProcess

logger = logging.getLogger(__name__)

STRATEGIES = ("stream", "cache")


class DownloadService:

    def __init__(self, runner: ProcessRunner, limiter: ConcurrencyLimiter, metadata: MetadataCache,
                 registry: PlatformRegistry, artifacts: Optional[ArtifactCache] = None,
                 ytdlp_path: str = "yt-dlp", ffmpeg_path: Optional[str] = None,
                 strategy: Optional[str] = None, timeout: Optional[float] = None):
        self.runner = runner
        self.limiter = limiter
        self.metadata = metadata
        self.registry = registry
        self.artifacts = artifacts
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.strategy = (strategy or config.DOWNLOAD_STRATEGY).lower()
        self.timeout = timeout if timeout is not None else config.DOWNLOAD_TIMEOUT
        self.inflight = InFlight("download")

        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown download strategy '{self.strategy}', expected one of {STRATEGIES}")
        if self.strategy == "cache" and self.artifacts is None:
            raise ValueError("The cache download strategy needs an artifact cache")

    @property
    def caches_files(self) -> bool:
        return self.strategy == "cache"

    def format_selector(self, record: VideoRecord, format_id: Optional[str] = None) -> str:
        """
        Selector for the extraction tool.

        A chosen format that already carries audio is used as is, a video-only
        one is merged with the best audio. Without a choice the platform
        default applies.
        """
        if not format_id:
            return self.registry.arguments_for(record.platform).media_selector
        option = record.find_format(format_id)
        if option is not None and option.has_audio:
            return format_id
        return f"{format_id}+bestaudio[ext=m4a]/bestaudio/best"

    def tool_args(self, record: VideoRecord, selector: str, output: str) -> List[str]:
        args = [
            record.original_url,
            "-o", output,
            "-f", selector,
            "--no-playlist",
            "--no-warnings",
            "--no-progress",
        ]
        if self.ffmpeg_path:
            args += ["--ffmpeg-location", self.ffmpeg_path]
        if output != "-":
            args += ["--merge-output-format", "mp4"]
        args += self.registry.arguments_for(record.platform).extra_flags
        return args

    async def open_stream(self, record: VideoRecord, format_id: Optional[str] = None) -> StreamingProcess:
        """
        Start the tool writing media to stdout.

        The extraction slot is released when the process exits or is killed.
        """
        selector = self.format_selector(record, format_id)
        logger.info(f"⬇️ Streaming {record.video_id} [{selector}]: {record.title}")
        ticket = await self.limiter.acquire()
        try:
            process = await self.runner.spawn_streaming(
                self.ytdlp_path, self.tool_args(record, selector, "-"), name="yt-dlp",
            )
        except BaseException:
            self.limiter.release(ticket)
            raise
        process.add_close_callback(lambda: self.limiter.release(ticket))
        return process

    async def get_or_download(self, record: VideoRecord, format_id: Optional[str] = None) -> ArtifactFile:
        if self.artifacts is None:
            raise InvalidRequest("Cached downloads are disabled")
        key = f"{record.video_id}:{format_id or 'default'}"
        artifact = await self.artifacts.get(key)
        if artifact is not None:
            logger.info(f"✅ Using cached download for {key}")
            return artifact
        return await self.inflight.run(key, lambda: self._download(record, format_id, key))

    async def _download(self, record: VideoRecord, format_id: Optional[str], key: str) -> ArtifactFile:
        selector = self.format_selector(record, format_id)
        path = self.artifacts.path_for(cache_safe_id(key))
        logger.info(f"⬇️ Downloading {key} [{selector}] to {path}")
        async with self.limiter.slot():
            try:
                await self.runner.run(
                    self.ytdlp_path, self.tool_args(record, selector, path),
                    timeout=self.timeout, name="yt-dlp", expect_output=False,
                )
            except BaseException:
                await asyncio.get_running_loop().run_in_executor(None, remove_file, path)
                raise

        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, os.path.exists, path):
            raise ProcessEmptyOutput("Download finished without producing a file")
        return await self.artifacts.register(key, path)
