"""
Liveness and readiness endpoints.

  GET /health → 200 {"status": "ok", "uptime_s": N}
  GET /ready  → 200 {"status": "ready"} or 503 {"status": "starting"}

Mounted on the main aiohttp application; used by container health checks.
"""

import logging
import time

from aiohttp import web

logger = logging.getLogger(__name__)

_START_TIME = time.monotonic()
_READY = False  # flipped to True after DB init completes


def set_ready(ready: bool = True) -> None:
    """Call this once the database is initialised."""
    global _READY
    _READY = ready
    if ready:
        logger.info("Health: marked ready")


def is_ready() -> bool:
    return _READY


async def handle_health(request: web.Request) -> web.Response:
    uptime = int(time.monotonic() - _START_TIME)
    return web.json_response({"status": "ok", "uptime_s": uptime})


async def handle_ready(request: web.Request) -> web.Response:
    if _READY:
        return web.json_response({"status": "ready"})
    return web.json_response({"status": "starting"}, status=503)


def add_health_routes(app: web.Application) -> None:
    app.router.add_get("/health", handle_health)
    app.router.add_get("/ready", handle_ready)
