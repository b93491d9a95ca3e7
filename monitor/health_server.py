"""Liveness HTTP endpoint."""

import logging

from aiohttp import web

from config import HEALTH_HOST, HEALTH_PORT
from trading.kill_switch import KillSwitch

logger = logging.getLogger(__name__)


class HealthServer:
    def __init__(self, kill_switch: KillSwitch, host: str = HEALTH_HOST, port: int = HEALTH_PORT) -> None:
        self.kill_switch = kill_switch
        self.host = host
        self.port = port
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info("Health check listening on %s:%s/health", self.host, self.port)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        if self.kill_switch.tripped:
            return web.Response(text=f"HALTED {self.kill_switch.reason}", status=503)
        return web.Response(text="OK")
