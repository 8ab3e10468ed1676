"""Per-client sliding-window rate limiter.

Each client id owns a deque of admission timestamps.  ``allow`` purges
timestamps older than ``now - window``, admits iff fewer than
``requests_per_minute`` remain, and records ``now`` on admission, all under a
single ``asyncio.Lock``.  ``burst_size`` is carried for configuration
compatibility only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

from chatrelay.core import telemetry
from chatrelay.core.exceptions import RateLimitedError
from chatrelay.core.settings import RateLimitConfig

_log = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimiter:
    def __init__(self, config: RateLimitConfig | None = None, *, clock: Clock = time.monotonic) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._windows: dict[str, deque[float]] = {}

    @property
    def limit(self) -> int:
        return self.config.requests_per_minute

    @property
    def window(self) -> float:
        return self.config.window

    def _purge(self, stamps: deque[float], now: float) -> None:
        cutoff = now - self.window
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

    async def allow(self, client_id: str, deadline: float | None = None) -> None:
        """Admit one request for *client_id* or raise :class:`RateLimitedError`."""
        async with asyncio.timeout_at(deadline):
            async with self._lock:
                now = self._clock()
                stamps = self._windows.setdefault(client_id, deque())
                self._purge(stamps, now)
                count = len(stamps)
                if count >= self.limit:
                    telemetry.record_rate_limited()
                    _log.warning(
                        "rate limit exceeded for %s (%d/%d in %gs)",
                        client_id,
                        count,
                        self.limit,
                        self.window,
                    )
                    raise RateLimitedError(self.limit, count, self.window)
                stamps.append(now)

    async def count(self, client_id: str) -> int:
        async with self._lock:
            stamps = self._windows.get(client_id)
            if not stamps:
                return 0
            self._purge(stamps, self._clock())
            return len(stamps)

    async def cleanup(self) -> int:
        """Purge expired timestamps for every client; drop empty clients. Returns clients removed."""
        async with self._lock:
            now = self._clock()
            removed = 0
            for client_id in list(self._windows):
                stamps = self._windows[client_id]
                self._purge(stamps, now)
                if not stamps:
                    del self._windows[client_id]
                    removed += 1
        if removed:
            _log.debug("rate limiter cleanup removed %d idle clients", removed)
        return removed

    def tracked_clients(self) -> list[str]:
        return list(self._windows)

    async def run_cleanup(self, stop: asyncio.Event, interval: float | None = None) -> None:
        """Call :meth:`cleanup` every *interval* (default: the window) until *stop* is set."""
        interval = interval or self.window
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                await self.cleanup()

    def start_cleanup_task(
        self, stop: asyncio.Event, interval: float | None = None
    ) -> asyncio.Task[None]:
        return asyncio.create_task(self.run_cleanup(stop, interval), name="rate-limiter-cleanup")


__all__ = ["RateLimiter"]
