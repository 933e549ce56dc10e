"""
Service container for the API.

Builds every component from ``config`` (or takes them ready-made in tests)
and owns their start/stop lifecycle. Routes reach it through
``request.app.state.gateway``.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import config
from utils import tool_paths
from .artifact_cache import ArtifactCache
from .downloads import DownloadService
from .extractor import Extractor
from .janitor import CacheJanitor, SweepResult
from .limiter import ConcurrencyLimiter
from .metadata_cache import MetadataCache
from .platforms import PlatformRegistry
from .preview import PreviewGenerator
from .process_runner import ProcessRunner
from .streaming import StreamServer

logger = logging.getLogger(__name__)


class Gateway:

    def __init__(self, registry: Optional[PlatformRegistry] = None, runner: Optional[ProcessRunner] = None,
                 metadata: Optional[MetadataCache] = None, cache_dir: Optional[str] = None,
                 ytdlp_path: str = "yt-dlp", ffmpeg_path: str = "ffmpeg",
                 dependencies: Optional[Dict[str, Optional[str]]] = None, warmup: Optional[bool] = None,
                 **overrides: Any):
        self.registry = registry or PlatformRegistry()
        self.runner = runner or ProcessRunner()
        self.metadata = metadata or MetadataCache()
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.dependencies = dependencies or {}
        self.warmup = warmup if warmup is not None else config.PREVIEW_WARMUP
        self.started_at = time.time()

        self.extraction_limiter = ConcurrencyLimiter(
            "extraction", config.MAX_CONCURRENT_EXTRACTIONS, queue_timeout=config.QUEUE_TIMEOUT,
        )
        self.transcode_limiter = ConcurrencyLimiter(
            "transcode", config.MAX_CONCURRENT_TRANSCODES, queue_timeout=config.QUEUE_TIMEOUT,
        )
        self.preview_files = ArtifactCache("preview", directory=cache_dir)
        self.download_files = ArtifactCache("download", directory=cache_dir)

        self.extractor = Extractor(
            self.registry, self.runner, self.extraction_limiter, self.metadata,
            ytdlp_path=ytdlp_path, **overrides.get("extractor", {}),
        )
        self.previews = PreviewGenerator(
            self.runner, self.transcode_limiter, self.metadata, self.registry, self.preview_files,
            ytdlp_path=ytdlp_path, ffmpeg_path=ffmpeg_path, **overrides.get("previews", {}),
        )
        # downloads are extraction-tool processes, so they share the extraction bound
        self.downloads = DownloadService(
            self.runner, self.extraction_limiter, self.metadata, self.registry, self.download_files,
            ytdlp_path=ytdlp_path, ffmpeg_path=ffmpeg_path, **overrides.get("downloads", {}),
        )
        self.streams = StreamServer()
        self.janitor = CacheJanitor(self.metadata, [self.preview_files, self.download_files])

    @classmethod
    def from_config(cls) -> "Gateway":
        """Resolve tool binaries and versions once, then build the services."""
        try:
            ytdlp_path = tool_paths.get_ytdlp_path()
        except RuntimeError as e:
            logger.error(f"❌ {e}")
            ytdlp_path = "yt-dlp"
        try:
            ffmpeg_path = tool_paths.get_ffmpeg_path()
        except RuntimeError as e:
            logger.error(f"❌ {e}")
            ffmpeg_path = "ffmpeg"

        dependencies = tool_paths.check_dependencies()
        for tool, version in dependencies.items():
            if version:
                logger.info(f"✅ {tool}: {version}")
            else:
                logger.warning(f"⚠️ {tool} not available, related endpoints will fail")

        return cls(ytdlp_path=ytdlp_path, ffmpeg_path=ffmpeg_path, dependencies=dependencies)

    async def start(self):
        self.janitor.start()

    async def stop(self):
        await self.janitor.stop()
        await self.previews.stop()
        await self.preview_files.clear()
        await self.download_files.clear()
        logger.info(f"Stopped gateway ({self.runner.active_count} tool processes still running)")

    async def sweep(self) -> SweepResult:
        return await self.janitor.sweep()

    def stats(self) -> Dict[str, Any]:
        healthy = bool(self.dependencies) and all(self.dependencies.values())
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": round(time.time() - self.started_at, 1),
            "dependencies": self.dependencies,
            "metadata_entries": self.metadata.record_count(),
            "preview_files": len(self.preview_files),
            "download_files": len(self.download_files),
            "artifact_bytes": self.preview_files.total_bytes + self.download_files.total_bytes,
            "pending_extractions": len(self.metadata.inflight),
            "pending_previews": len(self.previews.inflight),
            "pending_downloads": len(self.downloads.inflight),
            "active_processes": self.runner.active_count,
            "limiters": {
                limiter.name: limiter.stats()
                for limiter in (self.extraction_limiter, self.transcode_limiter)
            },
        }
