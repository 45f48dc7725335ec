"""Minimal HTTP endpoint for hosting platform health checks."""

from __future__ import annotations

import logging

from aiohttp import web

logger = logging.getLogger(__name__)


async def _healthz(request: web.Request) -> web.Response:
    return web.Response(text="ok")


async def _index(request: web.Request) -> web.Response:
    return web.Response(text="bot online")


def build_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/healthz", _healthz)
    app.router.add_get("/", _index)
    return app


async def start_liveness_server(port: int, host: str = "0.0.0.0") -> web.AppRunner:
    """Serve ``/healthz`` on ``host:port``; call ``cleanup()`` on the runner to stop."""
    runner = web.AppRunner(build_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Liveness endpoint listening on %s:%d", host, port)
    return runner
