"""
Status HTTP Server

Read-only JSON view of the lifecycle manager:
- GET /health  -> healthy while a bus connection is up
- GET /status  -> full lifecycle snapshot
"""

from datetime import datetime, timezone
from typing import Any, Protocol

from aiohttp import web

from fieldgate.common.config import StatusSettings
from fieldgate.common.logging_setup import get_service_logger

logger = get_service_logger("status")


class StatusSource(Protocol):
    def get_status(self) -> dict[str, Any]:
        ...


class StatusServer:
    def __init__(self, source: StatusSource, settings: StatusSettings):
        self._source = source
        self.settings = settings
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)
        return app

    async def start(self) -> None:
        """Start the status HTTP server"""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await site.start()

        logger.info(f"Status server started on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        """Stop the status HTTP server"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        status = self._source.get_status()
        return web.json_response({
            "status": "healthy" if status["connected"] else "degraded",
            "service": "fieldgate",
            "epoch": status["epoch"],
            "fail_count": status["fail_count"],
            "threshold": status["threshold"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self._source.get_status())
