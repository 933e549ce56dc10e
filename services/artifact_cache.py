"""
Index of generated files on disk (previews, cached downloads).
"""

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import config

logger = logging.getLogger(__name__)


@dataclass
class ArtifactFile:
    key: str
    path: str
    created_at: float
    size_bytes: int


def remove_file(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


class ArtifactCache:
    """
    TTL- and size-bounded file cache.

    The index lives in memory only; files left behind by a previous process
    are not picked up again.
    """

    def __init__(self, name: str, directory: Optional[str] = None, ttl: Optional[float] = None,
                 max_bytes: Optional[int] = None, target_ratio: Optional[float] = None,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.directory = directory or config.CACHE_DIR
        self.ttl = ttl if ttl is not None else config.ARTIFACT_CACHE_TTL
        self.max_bytes = max_bytes if max_bytes is not None else int(config.ARTIFACT_CACHE_MAX_MB * 1024 * 1024)
        self.target_ratio = target_ratio if target_ratio is not None else config.ARTIFACT_CACHE_TARGET_RATIO
        self.clock = clock
        self._files: Dict[str, ArtifactFile] = {}
        os.makedirs(self.directory, exist_ok=True)

    def __len__(self):
        return len(self._files)

    def __contains__(self, key: str) -> bool:
        return key in self._files

    @property
    def total_bytes(self) -> int:
        return sum(artifact.size_bytes for artifact in self._files.values())

    def path_for(self, key: str, suffix: str = ".mp4") -> str:
        return os.path.join(self.directory, f"{self.name}_{key}_{uuid.uuid4().hex[:12]}{suffix}")

    def _expired(self, artifact: ArtifactFile, now: float) -> bool:
        return now - artifact.created_at >= self.ttl

    def is_fresh(self, key: str) -> bool:
        """Index-only check: an unexpired entry exists (the file is not stat'ed)."""
        artifact = self._files.get(key)
        return artifact is not None and not self._expired(artifact, self.clock())

    @staticmethod
    async def _disk(func: Callable, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def get(self, key: str) -> Optional[ArtifactFile]:
        """Live artifact whose file still exists, else None (stale entries are dropped)."""
        artifact = self._files.get(key)
        if artifact is None:
            return None
        if self._expired(artifact, self.clock()):
            self._files.pop(key, None)
            await self._delete(artifact)
            return None
        if not await self._disk(os.path.exists, artifact.path):
            logger.warning(f"⚠️ {self.name} file vanished: {artifact.path}")
            self._files.pop(key, None)
            return None
        return artifact

    async def register(self, key: str, path: str) -> ArtifactFile:
        artifact = ArtifactFile(
            key=key,
            path=path,
            created_at=self.clock(),
            size_bytes=await self._disk(os.path.getsize, path),
        )
        previous = self._files.get(key)
        self._files[key] = artifact
        if previous is not None and previous.path != path:
            await self._delete(previous)
        logger.info(f"Cached {self.name} for {key}: {path} ({artifact.size_bytes} bytes)")
        return artifact

    async def remove(self, key: str) -> Optional[ArtifactFile]:
        artifact = self._files.pop(key, None)
        if artifact is not None:
            await self._delete(artifact)
        return artifact

    async def _delete(self, artifact: ArtifactFile):
        try:
            await self._disk(remove_file, artifact.path)
        except OSError as e:
            logger.error(f"Failed to delete {self.name} file {artifact.path}: {e}")

    async def purge_expired(self) -> List[ArtifactFile]:
        now = self.clock()
        expired = []
        for artifact in list(self._files.values()):
            if self._expired(artifact, now) or not await self._disk(os.path.exists, artifact.path):
                expired.append(artifact)
        for artifact in expired:
            if self._files.get(artifact.key) is artifact:
                self._files.pop(artifact.key)
            await self._delete(artifact)
        return expired

    async def enforce_size_limit(self) -> List[ArtifactFile]:
        """Evict oldest first until usage is below ``target_ratio`` of the ceiling."""
        total = self.total_bytes
        if total <= self.max_bytes:
            return []
        target = self.max_bytes * self.target_ratio
        evicted = []
        for artifact in sorted(self._files.values(), key=lambda a: a.created_at):
            if total < target:
                break
            self._files.pop(artifact.key, None)
            await self._delete(artifact)
            total -= artifact.size_bytes
            evicted.append(artifact)
        logger.info(f"🧹 {self.name} cache over ceiling, evicted {len(evicted)} files")
        return evicted

    async def clear(self):
        for key in list(self._files):
            await self.remove(key)
