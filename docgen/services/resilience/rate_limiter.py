"""Per-backend admission control over sliding minute and hour windows."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable
from collections.abc import Callable

from docgen.core.config import RateLimitConfig

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0


class _Window:
    def __init__(self, span_s: float, limit: int):
        self.span_s = span_s
        self.limit = limit
        self.stamps: deque[float] = deque()

    def evict(self, now: float) -> None:
        while self.stamps and now - self.stamps[0] >= self.span_s:
            self.stamps.popleft()

    def delay(self, now: float) -> float:
        if len(self.stamps) < self.limit:
            return 0.0
        return self.stamps[0] + self.span_s - now


class RateLimiter:
    """Delays callers until both windows have room; never drops a request.

    Waiters queue on a single ``asyncio.Lock``, so admission is first-come
    first-served. A caller cancelled while waiting leaves no trace in the counters.
    """

    def __init__(
        self,
        backend_id: str,
        requests_per_minute: int = 600,
        requests_per_hour: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend_id = backend_id
        self._windows = (_Window(MINUTE, requests_per_minute), _Window(HOUR, requests_per_hour))
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, backend_id: str, config: RateLimitConfig, **kwargs) -> RateLimiter:
        return cls(backend_id, config.requests_per_minute, config.requests_per_hour, **kwargs)

    async def acquire(self) -> float:
        """Wait for a slot and take it. Returns the seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                delay = 0.0
                for window in self._windows:
                    window.evict(now)
                    delay = max(delay, window.delay(now))
                if delay <= 0:
                    for window in self._windows:
                        window.stamps.append(now)
                    return waited
                logger.info("Rate limit reached for %s, waiting %.2fs", self.backend_id, delay)
                await self._sleep(delay)
                waited += delay

    def snapshot(self) -> dict[str, int]:
        now = self._clock()
        minute, hour = self._windows
        return {
            "requests_last_minute": sum(1 for s in minute.stamps if now - s < minute.span_s),
            "requests_last_hour": sum(1 for s in hour.stamps if now - s < hour.span_s),
            "limit_per_minute": minute.limit,
            "limit_per_hour": hour.limit,
        }
