"""
Short preview clip generation.

The extraction tool streams a low-resolution source to stdout, the
transcoder reads it from a pipe and keeps only the first few seconds,
scaled down and without audio. Finished clips are kept in the artifact cache;
concurrent requests for the same video share one generation.
"""

import asyncio
import logging
import os
from typing import List, Optional, Set

import config
from models.records import VideoRecord
from utils.filenames import cache_safe_id
from .artifact_cache import ArtifactCache, ArtifactFile, remove_file
from .errors import GatewayError, ProcessEmptyOutput, ProcessError, promote
from .inflight import InFlight
from .limiter import ConcurrencyLimiter
from .metadata_cache import MetadataCache
from .pipeline import TwoStagePipeline
from .platforms import PlatformRegistry
from .process_runner import ProcessRunner

logger = logging.getLogger(__name__)

PIPE_OUTPUT = "pipe:1"


def _has_content(path: str) -> bool:
    return os.path.exists(path) and os.path.getsize(path) > 0


class PreviewGenerator:

    def __init__(self, runner: ProcessRunner, limiter: ConcurrencyLimiter, metadata: MetadataCache,
                 registry: PlatformRegistry, artifacts: ArtifactCache,
                 ytdlp_path: str = "yt-dlp", ffmpeg_path: str = "ffmpeg",
                 duration: Optional[float] = None, start: Optional[float] = None,
                 width: Optional[int] = None, crf: Optional[int] = None, preset: Optional[str] = None,
                 timeout: Optional[float] = None, source_format: Optional[str] = None,
                 from_direct_url: Optional[bool] = None, attempts: Optional[int] = None,
                 retry_delay: Optional[float] = None):
        self.runner = runner
        self.limiter = limiter
        self.metadata = metadata
        self.registry = registry
        self.artifacts = artifacts
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.duration = duration if duration is not None else config.PREVIEW_DURATION
        self.start = start if start is not None else config.PREVIEW_START
        self.width = width if width is not None else config.PREVIEW_WIDTH
        self.crf = crf if crf is not None else config.PREVIEW_CRF
        self.preset = preset or config.PREVIEW_PRESET
        self.timeout = timeout if timeout is not None else config.PREVIEW_TIMEOUT
        self.source_format = source_format or config.PREVIEW_FORMAT
        self.from_direct_url = from_direct_url if from_direct_url is not None else config.PREVIEW_FROM_DIRECT_URL
        self.attempts = max(1, attempts if attempts is not None else config.EXTRACT_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else config.RETRY_DELAY
        self.inflight = InFlight("preview")
        self._warming: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # command lines
    # ------------------------------------------------------------------

    def source_command(self, record: VideoRecord) -> List[str]:
        arguments = self.registry.arguments_for(record.platform)
        return [
            self.ytdlp_path,
            record.original_url,
            "-o", "-",
            "-f", self.source_format,
            "--no-playlist",
            "--no-warnings",
            "--no-progress",
            "--force-ipv4",
            *arguments.extra_flags,
        ]

    def transcoder_command(self, source: str, output: str) -> List[str]:
        args = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error"]
        if self.start > 0:
            args += ["-ss", f"{self.start:g}"]
        args += [
            "-i", source,
            "-t", f"{self.duration:g}",
            "-vf", f"scale='min({self.width},iw)':-2",
            "-an",
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-pix_fmt", "yuv420p",
        ]
        if output == PIPE_OUTPUT:
            # fragmented so the player can start before the file is complete
            args += ["-movflags", "frag_keyframe+empty_moov", "-f", "mp4", PIPE_OUTPUT]
        else:
            args += ["-movflags", "+faststart", "-f", "mp4", "-y", output]
        return args

    # ------------------------------------------------------------------
    # cached previews
    # ------------------------------------------------------------------

    async def get_or_generate_preview(self, video_id: str) -> ArtifactFile:
        """
        Cached preview for a known video, generating it on a miss.

        Raises:
            NotFoundOrExpired: no live metadata for ``video_id`` (nothing is spawned)
        """
        record = self.metadata.require(video_id)
        artifact = await self.artifacts.get(video_id)
        if artifact is not None:
            logger.info(f"✅ Using cached preview for {video_id}")
            return artifact
        return await self.inflight.run(video_id, lambda: self._generate(record))

    async def _generate(self, record: VideoRecord) -> ArtifactFile:
        for attempt in range(1, self.attempts + 1):
            try:
                return await self._generate_once(record)
            except ProcessError as e:
                error: GatewayError = promote(e)
                if not error.retryable or attempt == self.attempts:
                    if error is e:
                        raise
                    raise error from e
                logger.warning(f"⚠️ Preview attempt {attempt}/{self.attempts} for {record.video_id} failed: {e}")
                await asyncio.sleep(self.retry_delay * attempt)

    async def _generate_once(self, record: VideoRecord) -> ArtifactFile:
        path = self.artifacts.path_for(cache_safe_id(record.video_id))
        logger.info(f"🎥 Generating preview for {record.video_id} ({record.platform.value})")
        async with self.limiter.slot():
            try:
                if self.from_direct_url and record.direct_media_url:
                    await self.runner.run(
                        self.ffmpeg_path, self.transcoder_command(record.direct_media_url, path)[1:],
                        timeout=self.timeout, name="ffmpeg", expect_output=False,
                    )
                else:
                    pipeline = await TwoStagePipeline.start(
                        self.runner, self.source_command(record), self.transcoder_command("pipe:0", path),
                    )
                    await pipeline.wait(timeout=self.timeout)
            except BaseException:
                await self._discard(path)
                raise

        if not await asyncio.get_running_loop().run_in_executor(None, _has_content, path):
            await self._discard(path)
            raise ProcessEmptyOutput("Transcoder produced an empty preview")
        return await self.artifacts.register(record.video_id, path)

    @staticmethod
    async def _discard(path: str):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, remove_file, path)

    # ------------------------------------------------------------------
    # live previews and warm-up
    # ------------------------------------------------------------------

    async def open_preview_stream(self, video_id: str) -> TwoStagePipeline:
        """
        Start a pipeline whose transcoder writes fragmented MP4 to stdout.

        The transcode slot is held until the pipeline is closed or finishes.
        """
        record = self.metadata.require(video_id)
        ticket = await self.limiter.acquire()
        try:
            pipeline = await TwoStagePipeline.start(
                self.runner, self.source_command(record), self.transcoder_command("pipe:0", PIPE_OUTPUT),
                capture_output=True,
            )
        except BaseException:
            self.limiter.release(ticket)
            raise
        pipeline.add_close_callback(lambda: self.limiter.release(ticket))
        return pipeline

    def warm(self, video_id: str) -> Optional[asyncio.Task]:
        """Start background generation unless a preview exists or is under way."""
        if self.artifacts.is_fresh(video_id) or video_id in self.inflight:
            return None
        task = asyncio.ensure_future(self.get_or_generate_preview(video_id))
        self._warming.add(task)
        task.add_done_callback(self._warm_finished)
        return task

    def _warm_finished(self, task: asyncio.Task):
        self._warming.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Background preview generation failed: {error}")

    async def stop(self):
        for task in list(self._warming):
            task.cancel()
        await asyncio.gather(*self._warming, return_exceptions=True)
