"""
FIFO concurrency limiter for external tool processes.

One instance bounds extraction processes, another bounds transcoders. A
released slot is handed straight to the oldest waiter, so ``in_use`` never
exceeds ``capacity`` and nobody queued earlier can be overtaken.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Deque, Dict, Optional

from .errors import ResourceExhausted

logger = logging.getLogger(__name__)

_ticket_ids = itertools.count(1)


class Ticket:
    """Proof of one acquired slot. Releasing it twice is a no-op."""

    __slots__ = ('id', 'limiter_name', 'acquired_at', 'released')

    def __init__(self, limiter_name: str):
        self.id = next(_ticket_ids)
        self.limiter_name = limiter_name
        self.acquired_at = time.monotonic()
        self.released = False

    def __repr__(self):
        return f"<Ticket {self.limiter_name}#{self.id}{' released' if self.released else ''}>"


class ConcurrencyLimiter:

    def __init__(self, name: str, capacity: int, queue_timeout: Optional[float] = None):
        if capacity < 1:
            raise ValueError(f"{name} limiter capacity must be at least 1")
        self.name = name
        self.capacity = capacity
        self.queue_timeout = queue_timeout or None
        self.in_use = 0
        self.peak = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def stats(self) -> Dict[str, int]:
        return {
            'capacity': self.capacity,
            'in_use': self.in_use,
            'waiting': self.waiting,
            'peak': self.peak,
        }

    def _grant(self) -> Ticket:
        self.in_use += 1
        self.peak = max(self.peak, self.in_use)
        return Ticket(self.name)

    async def acquire(self, timeout: Optional[float] = None) -> Ticket:
        """
        Wait for a free slot.

        Raises:
            ResourceExhausted: no slot became free within the queue timeout
        """
        if self.in_use < self.capacity and not self.waiting:
            return self._grant()

        timeout = timeout if timeout is not None else self.queue_timeout
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"{self.name} limiter full ({self.in_use}/{self.capacity}), queued at position {len(self._waiters)}")
        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except (asyncio.CancelledError, asyncio.TimeoutError) as e:
            if waiter.done() and not waiter.cancelled():
                # slot was handed over just as we gave up; pass it on
                self.release(waiter.result())
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            if isinstance(e, asyncio.TimeoutError):
                logger.warning(f"{self.name} limiter: no slot within {timeout:g}s")
                raise ResourceExhausted(
                    f"Server busy: no {self.name} slot available",
                    details=f"waited {timeout:g}s with {self.in_use}/{self.capacity} in use",
                )
            raise

    def release(self, ticket: Ticket):
        if ticket.released:
            return
        ticket.released = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # in_use is unchanged: the slot moves to the waiter
            waiter.set_result(Ticket(self.name))
            return
        self.in_use -= 1

    @asynccontextmanager
    async def slot(self, timeout: Optional[float] = None):
        ticket = await self.acquire(timeout)
        try:
            yield ticket
        finally:
            self.release(ticket)
