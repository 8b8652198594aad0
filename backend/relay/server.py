"""Relay server: WebSocket broadcaster between control and display, plus HTTP side-channel.

The relay holds one piece of state, the last known ``full_state``. It is kept
current from every gate/queue/settings frame and sent to each connection as
soon as it identifies, so a late or reconnecting client resynchronizes without
history replay. Every other frame is forwarded to all other identified clients.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSMsgType, web

from relay.config import RelaySettings
from relay.tts_proxy import TTSProxy, TTSUpstreamError
from shared.protocol import (
    FullState,
    GateChanged,
    Identify,
    ProtocolError,
    QueueSnapshot,
    Role,
    SettingsChanged,
    decode,
    encode,
)

logger = logging.getLogger("Relay")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@dataclass(eq=False)
class RelayClient:
    ws: web.WebSocketResponse
    remote: str
    role: Role | None = None
    connected_at: float = field(default_factory=time.time)


class RelayServer:
    def __init__(self, settings: RelaySettings, tts_proxy: TTSProxy | None = None) -> None:
        self.settings = settings
        self.tts_proxy = tts_proxy or TTSProxy(
            settings.tts_upstream_url,
            timeout=settings.tts_timeout,
            cache_size=settings.tts_cache_size,
            cache_ttl=settings.tts_cache_ttl,
        )
        self.state = FullState()
        self.clients: list[RelayClient] = []
        self.frames_relayed = 0
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()
        self.app.on_shutdown.append(self._on_shutdown)
        self.app.on_cleanup.append(self._on_cleanup)

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/ping", self.handle_ping)
        self.app.router.add_get("/ws", self.handle_websocket)
        self.app.router.add_get("/tts", self.handle_tts)
        self.app.router.add_route("OPTIONS", "/tts", self.handle_preflight)

    # ---------------------------------------------------------------------------
    # HTTP
    # ---------------------------------------------------------------------------

    async def handle_root(self, request: web.Request) -> web.Response:
        """Root endpoint - minimal service info"""
        return web.json_response({"service": "minaqueue-relay", "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "clients": len(self.clients)})

    async def handle_status(self, request: web.Request) -> web.Response:
        roles: dict[str, int] = {role.value: 0 for role in Role}
        roles["unknown"] = 0
        for client in self.clients:
            roles[client.role.value if client.role else "unknown"] += 1
        return web.json_response(
            {
                "service": "minaqueue-relay",
                "uptime_seconds": int(time.time() - self._start_time),
                "clients": roles,
                "gate_open": self.state.gate_open,
                "queue_length": len(self.state.queue),
                "frames_relayed": self.frames_relayed,
                "tts_cache": {
                    "size": self.tts_proxy.cache.size,
                    "hits": self.tts_proxy.cache.hits,
                    "misses": self.tts_proxy.cache.misses,
                },
            }
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        """Ping endpoint"""
        return web.Response(text="pong")

    async def handle_preflight(self, request: web.Request) -> web.Response:
        return web.Response(status=204, headers=CORS_HEADERS)

    async def handle_tts(self, request: web.Request) -> web.Response:
        voice = request.query.get("voice") or self.settings.tts_default_voice
        text = request.query.get("text", "")
        if not text:
            return web.Response(status=400, text="Missing text parameter", headers=CORS_HEADERS)
        try:
            audio = await self.tts_proxy.fetch(voice, text)
        except TTSUpstreamError as e:
            logger.error(f"TTS proxy error: {e}")
            return web.Response(status=502, text=f"TTS error: {e}", headers=CORS_HEADERS)
        return web.Response(body=audio, content_type="audio/mpeg", headers=CORS_HEADERS)

    # ---------------------------------------------------------------------------
    # WebSocket
    # ---------------------------------------------------------------------------

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.settings.ws_heartbeat)
        await ws.prepare(request)
        client = RelayClient(ws=ws, remote=request.remote or "unknown")
        self.clients.append(client)
        logger.info(f"New client connected from {client.remote} (total: {len(self.clients)})")

        try:
            if not await self._await_identify(client):
                return ws
            async for frame in ws:
                if frame.type == WSMsgType.TEXT:
                    await self._handle_frame(client, frame.data)
                elif frame.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error from {client.remote}: {ws.exception()}")
        finally:
            if client in self.clients:
                self.clients.remove(client)
            role = client.role.value if client.role else "unknown"
            logger.info(f"Client disconnected ({role}, total: {len(self.clients)})")
        return ws

    async def _await_identify(self, client: RelayClient) -> bool:
        """Wait for the first frame to be ``identify``; close the socket otherwise."""
        try:
            frame = await client.ws.receive(timeout=self.settings.identify_timeout)
        except asyncio.TimeoutError:
            logger.info(f"Closing unidentified client {client.remote}")
            await client.ws.close(message=b"identify timeout")
            return False

        if frame.type != WSMsgType.TEXT:
            return False
        try:
            message = decode(frame.data)
        except ProtocolError as e:
            logger.warning(f"Bad first frame from {client.remote}: {e}")
            await client.ws.close(message=b"expected identify")
            return False
        if not isinstance(message, Identify):
            logger.warning(f"Expected identify from {client.remote}, got {message.type}")
            await client.ws.close(message=b"expected identify")
            return False

        client.role = message.role
        logger.info(f"Client identified as: {client.role.value}")
        await client.ws.send_str(encode(self.state))
        return True

    async def _handle_frame(self, sender: RelayClient, raw: str) -> None:
        try:
            message = decode(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping frame from {sender.role}: {e}")
            return

        if isinstance(message, Identify):
            sender.role = message.role
            logger.info(f"Client re-identified as: {sender.role.value}")
            return

        if sender.role is Role.CONTROL:
            self._update_state(message)
        logger.debug(f"Received {message.type} from {sender.role.value if sender.role else '?'}")
        await self.broadcast(encode(message), exclude=sender)

    def _update_state(self, message: Any) -> None:
        if isinstance(message, GateChanged):
            self.state = self.state.model_copy(update={"gate_open": message.is_open})
        elif isinstance(message, QueueSnapshot):
            self.state = self.state.model_copy(update={"queue": message.queue})
        elif isinstance(message, SettingsChanged):
            self.state = self.state.model_copy(update={"settings": message.settings})
        elif isinstance(message, FullState):
            self.state = message

    async def broadcast(self, raw: str, *, exclude: RelayClient | None = None) -> int:
        """Send *raw* to every identified client except *exclude*. Returns the count sent."""
        targets = [
            c for c in self.clients if c is not exclude and c.role is not None and not c.ws.closed
        ]
        sent = 0
        for client in targets:
            try:
                await client.ws.send_str(raw)
                sent += 1
            except (ConnectionResetError, RuntimeError) as e:
                logger.warning(f"Broadcast to {client.remote} failed: {type(e).__name__}: {e}")
        self.frames_relayed += 1
        logger.debug(f"Broadcast to {sent}/{len(targets)} other client(s)")
        return sent

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def _heartbeat(self) -> None:
        """Periodic heartbeat: log uptime and connection counts"""
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            uptime = int(time.time() - self._start_time)
            identified = sum(1 for c in self.clients if c.role is not None)
            logger.info(
                f"Heartbeat: uptime={uptime}s, clients={len(self.clients)} "
                f"(identified={identified}), relayed={self.frames_relayed}"
            )

    async def _on_shutdown(self, app: web.Application) -> None:
        for client in list(self.clients):
            await client.ws.close(message=b"server shutdown")

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.tts_proxy.close()

    async def start(self) -> None:
        """Start the relay"""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.settings.host, self.settings.port)
            await site.start()

            self._heartbeat_task = asyncio.create_task(self._heartbeat())

            base = f"{self.settings.host}:{self.settings.port}"
            logger.info(f"Relay started on {base}")
            logger.info(f"  WS  ws://{base}/ws - Sync channel")
            logger.info(f"  GET http://{base}/tts?voice=Brian&text=Hello - TTS proxy")
            logger.info(f"  GET http://{base}/health - Health check")
        except OSError as e:
            logger.exception(f"Failed to start relay: {e}")
            raise

    async def stop(self) -> None:
        """Stop the relay"""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Relay stopped")
