"""
Periodic cleanup of expired metadata and generated files.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import config
from .artifact_cache import ArtifactCache
from .metadata_cache import MetadataCache

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    metadata_removed: int = 0
    artifacts_removed: int = 0
    bytes_freed: int = 0


class CacheJanitor:
    """
    Runs ``sweep`` every ``interval`` seconds on the event loop.

    A failing step is logged and the remaining steps still run; the loop
    itself only stops through ``stop``.
    """

    def __init__(self, metadata: MetadataCache, artifacts: Sequence[ArtifactCache],
                 interval: Optional[float] = None):
        self.metadata = metadata
        self.artifacts: List[ArtifactCache] = list(artifacts)
        self.interval = interval if interval is not None else config.CLEANUP_INTERVAL
        self.sweeps = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        logger.info(f"Started cache janitor (every {self.interval:g}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Stopped cache janitor")

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in cache janitor: {e}")

    async def sweep(self) -> SweepResult:
        result = SweepResult()

        try:
            result.metadata_removed = self.metadata.purge_expired()
        except Exception as e:
            logger.error(f"Failed to purge metadata: {e}")

        for cache in self.artifacts:
            try:
                removed = await cache.purge_expired()
                removed += await cache.enforce_size_limit()
            except Exception as e:
                logger.error(f"Failed to sweep {cache.name} cache: {e}")
                continue
            result.artifacts_removed += len(removed)
            result.bytes_freed += sum(artifact.size_bytes for artifact in removed)

        self.sweeps += 1
        if result.metadata_removed or result.artifacts_removed:
            logger.info(
                f"🧹 Sweep removed {result.metadata_removed} metadata entries and "
                f"{result.artifacts_removed} files ({result.bytes_freed} bytes)"
            )
        else:
            logger.debug("Sweep found nothing to remove")
        return result
