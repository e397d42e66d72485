"""
Fixed-window rate limiter.

Each key (e.g. ``ai:<user_id>``) gets a counter and a window end time. The
first request after the window ends starts a fresh window. State is
process-local and advisory: it is lost on restart and not shared between
workers.

Usage:
    limiter = RateLimiter()
    result = limiter.check(f"ai:{user_id}", AI_PROCESS.limit, AI_PROCESS.window_ms)
    if not result.allowed:
        ...  # 429 with rate_limit_headers(result, AI_PROCESS.limit)
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPreset:
    limit: int
    window_ms: int


AI_PROCESS = RateLimitPreset(limit=10, window_ms=60_000)
CHAT = RateLimitPreset(limit=30, window_ms=60_000)
API_GENERAL = RateLimitPreset(limit=100, window_ms=60_000)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch milliseconds

    def retry_after_seconds(self, now_ms: float) -> int:
        return max(0, math.ceil((self.reset_at - now_ms) / 1000))


@dataclass
class _Window:
    count: int
    reset_at: float


def _wall_clock_ms() -> float:
    return time.time() * 1000


class RateLimiter:
    """
    Per-key fixed-window counters.

    `clock` returns the current time in epoch milliseconds; tests inject a
    fake one to step over window boundaries without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = _wall_clock_ms) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def now(self) -> float:
        return self._clock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """Count one request against `key` and report whether it is allowed."""
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now >= window.reset_at:
            window = _Window(count=1, reset_at=now + window_ms)
            self._windows[key] = window
            return RateLimitResult(True, max(0, limit - 1), window.reset_at)

        if window.count >= limit:
            logger.info("Rate limit hit for %s (%d/%d)", key, window.count, limit)
            return RateLimitResult(False, 0, window.reset_at)

        window.count += 1
        return RateLimitResult(True, max(0, limit - window.count), window.reset_at)

    def purge_expired(self) -> int:
        """Drop counters whose window has ended. Returns how many were removed."""
        now = self._clock()
        stale = [k for k, w in self._windows.items() if now >= w.reset_at]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("Purged %d expired rate-limit windows", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


def rate_limit_headers(result: RateLimitResult, limit: int) -> dict[str, str]:
    """Standard X-RateLimit-* headers; the reset is in epoch seconds."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at / 1000)),
    }
