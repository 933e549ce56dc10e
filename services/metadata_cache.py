"""
TTL cache of extraction results, keyed by both URL and video ID.
"""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import config
from models.records import VideoRecord
from .errors import NotFoundOrExpired
from .inflight import InFlight

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: VideoRecord
    created_at: float
    original_url: str

    def is_valid(self, now: float, ttl: float) -> bool:
        return now - self.created_at < ttl


class MetadataCache:

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.ttl = ttl if ttl is not None else config.METADATA_CACHE_TTL
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.inflight = InFlight("extraction")

    def __len__(self):
        return len(self._entries)

    def get(self, key: str) -> Optional[VideoRecord]:
        """Record for a URL or video ID, None on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self.clock(), self.ttl):
            self._evict(entry)
            return None
        return entry.value

    def require(self, video_id: str) -> VideoRecord:
        """Like ``get`` but raises NotFoundOrExpired, echoing the ID."""
        record = self.get(video_id)
        if record is None:
            raise NotFoundOrExpired("Video ID not found or expired", video_id=video_id)
        return record

    def put(self, url: str, video_id: str, record: VideoRecord):
        entry = CacheEntry(value=record, created_at=self.clock(), original_url=url)
        self._entries[url] = entry
        self._entries[video_id] = entry

    def _evict(self, entry: CacheEntry):
        for key in [k for k, v in self._entries.items() if v is entry]:
            del self._entries[key]

    async def get_or_compute(self, key: str,
                             compute: Callable[[str], Awaitable[VideoRecord]]) -> VideoRecord:
        """
        Cached record, or the result of ``compute(key)``.

        Concurrent misses for the same key share a single computation. The
        result is stored under the key and under its video ID.
        """
        record = self.get(key)
        if record is not None:
            logger.info(f"✅ Cache hit for: {key}")
            return record

        async def _compute():
            result = await compute(key)
            self.put(key, result.video_id, result)
            return result

        return await self.inflight.run(key, _compute)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns the number of distinct records removed."""
        now = self.clock()
        expired = {id(entry): entry for entry in self._entries.values() if not entry.is_valid(now, self.ttl)}
        for key in [k for k, v in self._entries.items() if id(v) in expired]:
            del self._entries[key]
        return len(expired)

    def record_count(self) -> int:
        return len({id(entry) for entry in self._entries.values()})
