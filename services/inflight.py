"""
Request coalescing: at most one running computation per key.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class InFlight:
    """
    Shares one pending task per key between all concurrent callers.

    Callers await the task through ``asyncio.shield`` so a caller that goes
    away (client disconnect) does not cancel the work for the others. The
    entry disappears as soon as the task finishes, whether it succeeded or
    failed, so a failure is never served to later callers.
    """

    def __init__(self, name: str):
        self.name = name
        self._pending: Dict[str, asyncio.Task] = {}

    def __len__(self):
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        task = self._pending.get(key)
        return task is not None and not task.done()

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._pending.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda finished, key=key: self._finished(key, finished))
        else:
            logger.info(f"⏳ Joining in-flight {self.name} for {key}")
        return await asyncio.shield(task)

    def _finished(self, key: str, task: asyncio.Task):
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"{self.name} for {key} failed: {task.exception()}")
