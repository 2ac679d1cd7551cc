"""
Request spacing for platform APIs.
One limiter per (platform, credential) is shared by every sync run in the process, so two
users' runs against the same vendor account cannot jointly exceed its published rate.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket with capacity 1: at most one request per `min_interval` seconds.
    acquire() waits until the next slot is free.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = max(float(min_interval), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock: Optional[asyncio.Lock] = None

    async def acquire(self) -> float:
        """Wait for a slot; returns the seconds waited."""
        if self.min_interval <= 0:
            return 0.0
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            if wait > 0:
                logger.debug("Rate limit: waiting %.2fs", wait)
                await self._sleep(wait)
                now = self._clock()
            self._next_slot = max(now, self._next_slot) + self.min_interval
            return max(wait, 0.0)

    def is_idle(self, grace: float = 0.0) -> bool:
        """No caller holds or waits for the lock and the next slot has been free for `grace` seconds."""
        if self._lock is not None and self._lock.locked():
            return False
        return self._next_slot + grace <= self._clock()


# Above this many accounts, limiters unused for IDLE_EVICT_AFTER seconds are dropped
MAX_LIMITERS = 1024
IDLE_EVICT_AFTER = 60.0

_limiters: dict[tuple[str, str], RateLimiter] = {}


def _evict_idle() -> None:
    for key, limiter in list(_limiters.items()):
        if limiter.is_idle(IDLE_EVICT_AFTER):
            del _limiters[key]


def limiter_for(platform: str, credential_key: str, min_interval: float) -> RateLimiter:
    """Process-wide limiter for one platform account."""
    key = (platform, credential_key)
    limiter = _limiters.get(key)
    if limiter is None:
        if len(_limiters) >= MAX_LIMITERS:
            _evict_idle()
        limiter = RateLimiter(min_interval)
        _limiters[key] = limiter
    return limiter
