"""
Rate limiting.

Inbound API requests are limited with SlowAPI. Outbound calls to the drug data
providers go through ``SlidingWindowRateLimiter``, which delays callers when a
source's window is saturated instead of rejecting them.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from medguard.config import get_settings
from medguard.core.logging import get_logger

logger = get_logger(__name__)


def get_rate_limit_string() -> str:
    """Get the inbound rate limit string from settings."""
    settings = get_settings()
    return f"{settings.RATE_LIMIT_REQUESTS}/{settings.RATE_LIMIT_WINDOW} seconds"


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_rate_limit_string()]
)


class SlidingWindowRateLimiter:
    """
    Rolling timestamp window per external source.

    ``acquire(source)`` returns immediately while the window has room. Once it
    is full the caller sleeps for the remainder of the window measured from
    the oldest request, so backpressure shows up as latency, never as an error.
    """

    def __init__(
        self,
        limits: dict[str, int],
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], "asyncio.Future"]] = None,
    ):
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._history: dict[str, deque] = {source: deque() for source in self.limits}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source] = lock
        return lock

    def _prune(self, history: deque, now: float) -> None:
        while history and now - history[0] >= self.window_seconds:
            history.popleft()

    async def acquire(self, source: str) -> float:
        """
        Reserve a slot for one request to ``source``.

        Returns:
            Seconds the caller was delayed (0.0 when the window had room).
        """
        limit = self.limits.get(source)
        if limit is None:
            return 0.0

        history = self._history.setdefault(source, deque())
        waited = 0.0

        async with self._lock_for(source):
            now = self._clock()
            self._prune(history, now)

            if len(history) >= limit:
                delay = self.window_seconds - (now - history[0])
                if delay > 0:
                    logger.debug(
                        f"Rate limit window saturated for {source}, delaying",
                        extra={"source": source, "delay_s": round(delay, 3)}
                    )
                    await self._sleep(delay)
                    waited = delay
                now = self._clock()
                self._prune(history, now)

            history.append(now)

        return waited

    def in_window(self, source: str) -> int:
        history = self._history.get(source)
        if not history:
            return 0
        self._prune(history, self._clock())
        return len(history)


def build_provider_rate_limiter() -> SlidingWindowRateLimiter:
    """Limiter configured with the per-source limits from settings."""
    settings = get_settings()
    return SlidingWindowRateLimiter(
        limits={
            "rxnorm": settings.RXNORM_RATE_LIMIT,
            "openfda": settings.OPENFDA_RATE_LIMIT,
        },
        window_seconds=settings.PROVIDER_RATE_WINDOW,
    )
