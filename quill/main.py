"""
quill entry point.
Initialises the database and model client, then serves the HTTP API.
"""

import asyncio
import logging
import os
import signal

from aiohttp import web

from .ai.claude_client import ClaudeClient
from .config import settings
from .health import set_ready
from .integrations.composio import ComposioClient
from .integrations.resend import ResendClient
from .logging_config import setup_logging
from .memory.database import DatabaseManager
from .server import create_app
from .utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


async def purge_loop(limiter: RateLimiter, interval: float) -> None:
    """Drop expired rate-limit windows every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        limiter.purge_expired()


async def serve() -> None:
    db = DatabaseManager()
    await db.init()

    limiter = RateLimiter()
    app = create_app(
        db,
        ClaudeClient(),
        limiter=limiter,
        resend=ResendClient(),
        composio=ComposioClient(),
    )

    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, settings.http_host, settings.http_port)
    await site.start()
    logger.info("HTTP server listening on %s:%d", settings.http_host, settings.http_port)

    purge_task = asyncio.create_task(purge_loop(limiter, settings.rate_limit_purge_interval))
    set_ready()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        set_ready(False)
        purge_task.cancel()
        await runner.cleanup()
        await db.close()
        logger.info("quill stopped")


def main() -> None:
    os.makedirs(settings.data_dir, exist_ok=True)
    setup_logging(settings.log_level, settings.logs_dir, settings.structured_logging)

    logger.info("Starting quill (data_dir=%s, model=%s)", settings.data_dir, settings.model_agent)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
