"""HTTP health check server"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from display.service import DisplayService

logger = logging.getLogger("Display.Health")


class HealthCheckServer:
    """HTTP health check server"""

    def __init__(
        self,
        service: "DisplayService | None" = None,
        host: str = "0.0.0.0",
        port: int = 4344,
        heartbeat_interval: float = 300.0,
    ):
        self.service: Any = service
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/ping", self.handle_ping)

    async def handle_root(self, request: web.Request) -> web.Response:
        """Root endpoint - minimal service info"""
        return web.json_response({"service": "minaqueue-display", "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness: always 200, ``ready`` once the relay channel is up"""
        ready = self.service is not None and self.service.channel.connected
        return web.json_response(
            {"status": "healthy" if ready else "starting", "ready": ready},
        )

    async def handle_status(self, request: web.Request) -> web.Response:
        """Sequencer and channel status"""
        body: dict[str, Any] = {
            "service": "minaqueue-display",
            "uptime_seconds": int(time.time() - self._start_time),
        }
        if self.service is not None:
            body.update(self.service.status())
        return web.json_response(body)

    async def handle_ping(self, request: web.Request) -> web.Response:
        """Ping endpoint"""
        return web.Response(text="pong")

    async def _heartbeat(self) -> None:
        """Periodic heartbeat: log uptime and sequencer status"""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            uptime = int(time.time() - self._start_time)
            if self.service is None:
                logger.info(f"Heartbeat: uptime={uptime}s")
                continue
            status = self.service.status()
            logger.info(
                f"Heartbeat: uptime={uptime}s, connected={status['connected']}, "
                f"gate_open={status['gate_open']}, pending={status['pending']}, "
                f"playing={status['currently_playing_id']}"
            )

    async def start(self) -> None:
        """Start health check server"""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()

            self._heartbeat_task = asyncio.create_task(self._heartbeat())

            logger.info(f"Health server started on {self.host}:{self.port}")
            logger.info(f"  GET http://{self.host}:{self.port}/health - Health check")
            logger.info(f"  GET http://{self.host}:{self.port}/status - Sequencer status")

        except OSError as e:
            logger.exception(f"Failed to start health server: {e}")
            raise

    async def stop(self) -> None:
        """Stop health check server"""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Health server stopped")
