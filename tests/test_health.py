"""
Tests for quill/health.py — liveness and readiness endpoints.

Uses aiohttp's TestClient so no real TCP socket is needed.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

import quill.health as health_module
from quill.health import add_health_routes, is_ready, set_ready


@pytest.fixture(autouse=True)
def reset_ready_flag():
    """Ensure _READY is reset to False between tests."""
    health_module._READY = False
    yield
    health_module._READY = False


def make_app() -> web.Application:
    app = web.Application()
    add_health_routes(app)
    return app


@pytest.mark.asyncio
async def test_health_endpoint_returns_200():
    """GET /health should always return 200 with uptime."""
    async with TestClient(TestServer(make_app())) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert isinstance(data["uptime_s"], int)


@pytest.mark.asyncio
async def test_ready_returns_503_before_set_ready():
    async with TestClient(TestServer(make_app())) as client:
        resp = await client.get("/ready")
        assert resp.status == 503
        assert (await resp.json())["status"] == "starting"


@pytest.mark.asyncio
async def test_ready_returns_200_after_set_ready():
    set_ready()
    async with TestClient(TestServer(make_app())) as client:
        resp = await client.get("/ready")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ready"


def test_set_ready_can_be_cleared():
    set_ready()
    assert is_ready()
    set_ready(False)
    assert not is_ready()
