"""Tests for quill/main.py background housekeeping."""

import asyncio

import pytest

from quill.main import purge_loop
from quill.utils.rate_limit import RateLimiter


@pytest.mark.asyncio
async def test_purge_loop_drops_expired_windows():
    limiter = RateLimiter()
    limiter.check("ai:user-1", 10, window_ms=1)

    task = asyncio.create_task(purge_loop(limiter, interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(limiter) == 0
