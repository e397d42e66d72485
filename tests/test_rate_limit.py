"""Tests for quill/utils/rate_limit.py — fixed-window counters and headers."""

from quill.utils.rate_limit import (
    AI_PROCESS,
    CHAT,
    RateLimiter,
    RateLimitResult,
    rate_limit_headers,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_presets():
    assert (AI_PROCESS.limit, AI_PROCESS.window_ms) == (10, 60_000)
    assert (CHAT.limit, CHAT.window_ms) == (30, 60_000)


def test_allows_up_to_limit_then_denies():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    results = [limiter.check("k", 3, 1000) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert {r.reset_at for r in results} == {clock.now + 1000}


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(4):
        limiter.check("k", 3, 1000)

    clock.now += 1001
    result = limiter.check("k", 3, 1000)

    assert result.allowed is True
    assert result.remaining == 2
    assert result.reset_at == clock.now + 1000


def test_window_boundary_is_exclusive():
    """A request exactly at reset_at starts a new window."""
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    first = limiter.check("k", 1, 1000)
    assert limiter.check("k", 1, 1000).allowed is False

    clock.now = first.reset_at
    assert limiter.check("k", 1, 1000).allowed is True


def test_denied_requests_do_not_extend_window():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    first = limiter.check("k", 1, 1000)
    clock.now += 500
    denied = limiter.check("k", 1, 1000)
    assert denied.reset_at == first.reset_at


def test_keys_are_independent():
    limiter = RateLimiter(clock=FakeClock())
    assert limiter.check("ai:a", 1, 1000).allowed
    assert not limiter.check("ai:a", 1, 1000).allowed
    assert limiter.check("ai:b", 1, 1000).allowed
    assert limiter.check("chat:a", 1, 1000).allowed


def test_purge_expired_drops_only_stale_windows():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    limiter.check("short", 5, 100)
    limiter.check("long", 5, 10_000)
    assert len(limiter) == 2

    clock.now += 200
    assert limiter.purge_expired() == 1
    assert len(limiter) == 1
    assert limiter.purge_expired() == 0


def test_headers_report_reset_in_epoch_seconds():
    result = RateLimitResult(allowed=True, remaining=7, reset_at=1_700_000_000_500)
    headers = rate_limit_headers(result, 10)
    assert headers == {
        "X-RateLimit-Limit": "10",
        "X-RateLimit-Remaining": "7",
        "X-RateLimit-Reset": "1700000001",
    }


def test_retry_after_rounds_up():
    result = RateLimitResult(allowed=False, remaining=0, reset_at=10_500)
    assert result.retry_after_seconds(9_000) == 2
    assert result.retry_after_seconds(20_000) == 0
