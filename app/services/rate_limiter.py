"""Per-domain concurrency limiting with a bounded wait queue."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from app.exceptions import OverloadedError

logger = logging.getLogger(__name__)


class DomainLimiter:
    """Caps concurrent upstream requests per domain.

    Up to ``concurrency`` requests run at once for a domain; up to
    ``queue_depth`` more wait their turn. Anything beyond that fails fast
    with OverloadedError instead of piling up.
    """

    def __init__(self, concurrency: int = 4, queue_depth: int = 32) -> None:
        self.concurrency = concurrency
        self.queue_depth = queue_depth
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._waiting: dict[str, int] = defaultdict(int)
        # Holders plus waiters; a domain's state is dropped when it hits zero
        self._users: dict[str, int] = {}

    def _semaphore(self, domain: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(domain)
        if sem is None:
            sem = asyncio.Semaphore(self.concurrency)
            self._semaphores[domain] = sem
        return sem

    @property
    def tracked_domains(self) -> int:
        """Number of domains with a request running or queued."""
        return len(self._semaphores)

    def waiting(self, domain: str) -> int:
        """Return how many callers are queued for a domain."""
        return self._waiting.get(domain, 0)

    @asynccontextmanager
    async def slot(self, domain: str) -> AsyncIterator[None]:
        """Hold one concurrency slot for ``domain`` for the duration of the block.

        Raises:
            OverloadedError: If the domain's wait queue is already full.
        """
        sem = self._semaphore(domain)
        if sem.locked() and self.waiting(domain) >= self.queue_depth:
            logger.warning("Domain queue full for %s (%d waiting)", domain, self.waiting(domain))
            raise OverloadedError(domain)

        self._users[domain] = self._users.get(domain, 0) + 1
        try:
            if sem.locked():
                self._waiting[domain] += 1
                try:
                    await sem.acquire()
                finally:
                    self._waiting[domain] -= 1
            else:
                await sem.acquire()

            try:
                yield
            finally:
                sem.release()
        finally:
            self._users[domain] -= 1
            if not self._users[domain]:
                del self._users[domain]
                self._semaphores.pop(domain, None)
                self._waiting.pop(domain, None)
