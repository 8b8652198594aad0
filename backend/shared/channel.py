"""Synchronization channel client with auto-reconnect and message-type routing."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
from pydantic import BaseModel

from shared.protocol import Identify, Message, ProtocolError, Role, decode, encode

LOGGER = logging.getLogger("SyncChannel")

MessageHandler = Callable[[Any], Awaitable[None] | None]
LifecycleCallback = Callable[[], Awaitable[None] | None]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class SynchronizationChannel:
    """Relay client for one role.

    Lifecycle: ``connect()`` starts a background loop that (re)connects with a
    fixed backoff, sends ``identify`` on every connection and dispatches inbound
    frames to handlers registered with ``on(type, handler)``. Handlers run one at
    a time on the receive loop, in arrival order.
    """

    def __init__(
        self,
        url: str,
        role: Role,
        *,
        reconnect_delay: float = 2.0,
        heartbeat: float | None = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.role = role
        self.reconnect_delay = reconnect_delay
        self.heartbeat = heartbeat
        self._session = session
        self._own_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._handlers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._connect_callbacks: list[LifecycleCallback] = []
        self._disconnect_callbacks: list[LifecycleCallback] = []
        self.connection_count = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(self, message_type: str, handler: MessageHandler) -> None:
        self._handlers[message_type].append(handler)

    def on_connect(self, callback: LifecycleCallback) -> None:
        self._connect_callbacks.append(callback)

    def on_disconnect(self, callback: LifecycleCallback) -> None:
        self._disconnect_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._task = asyncio.create_task(self._run(), name=f"sync-channel-{self.role.value}")

    async def disconnect(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None
        LOGGER.info(f"[{self.role.value}] Channel closed")

    async def send(self, message: BaseModel) -> bool:
        """Send one message. Returns False (and drops it) when not connected."""
        ws = self._ws
        if ws is None or ws.closed:
            kind = getattr(message, "type", type(message).__name__)
            LOGGER.warning(f"[{self.role.value}] Cannot send {kind} - not connected")
            return False
        try:
            await ws.send_str(encode(message))
            return True
        except (ConnectionResetError, aiohttp.ClientError, RuntimeError) as e:
            LOGGER.warning(f"[{self.role.value}] Send failed: {type(e).__name__}: {e}")
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        assert self._session is not None
        while True:
            try:
                async with self._session.ws_connect(self.url, heartbeat=self.heartbeat) as ws:
                    self._ws = ws
                    self.connection_count += 1
                    LOGGER.info(f"[{self.role.value}] Connected to {self.url}")
                    await ws.send_str(encode(Identify(role=self.role)))
                    await self._fire(self._connect_callbacks)

                    async for frame in ws:
                        if frame.type == aiohttp.WSMsgType.TEXT:
                            await self._dispatch(frame.data)
                        elif frame.type == aiohttp.WSMsgType.ERROR:
                            LOGGER.warning(f"[{self.role.value}] Socket error: {ws.exception()}")
                            break
                LOGGER.info(f"[{self.role.value}] Disconnected")
            except asyncio.CancelledError:
                await self._mark_disconnected()
                raise
            except Exception as e:
                LOGGER.error(f"[{self.role.value}] Channel error: {type(e).__name__}: {e}")

            await self._mark_disconnected()
            LOGGER.warning(f"[{self.role.value}] Reconnecting in {self.reconnect_delay}s...")
            await asyncio.sleep(self.reconnect_delay)

    async def _mark_disconnected(self) -> None:
        if self._ws is None:
            return
        self._ws = None
        await self._fire(self._disconnect_callbacks)

    async def _fire(self, callbacks: list[LifecycleCallback]) -> None:
        for callback in callbacks:
            try:
                await _maybe_await(callback())
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception(f"[{self.role.value}] Lifecycle callback failed")

    async def _dispatch(self, raw: str) -> None:
        try:
            message: Message = decode(raw)
        except ProtocolError as e:
            LOGGER.warning(f"[{self.role.value}] Dropping frame: {e}")
            return

        handlers = self._handlers.get(message.type, [])
        if not handlers:
            LOGGER.debug(f"[{self.role.value}] No handler for {message.type}")
            return
        for handler in handlers:
            try:
                await _maybe_await(handler(message))
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception(f"[{self.role.value}] Handler for {message.type} failed")
