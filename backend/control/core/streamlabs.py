"""Streamlabs socket feed: tips become donation alerts"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import socketio

from shared.models.alert import AlertCategory

LOGGER = logging.getLogger("StreamlabsFeed")

STREAMLABS_SOCKET_URL = "https://sockets.streamlabs.com"

AlertSink = Callable[[Mapping[str, Any]], Awaitable[Any]]


def donation_events(event: Any) -> list[dict]:
    """Map one Streamlabs ``event`` payload to ingestion events.

    Only ``donation`` events produce alerts; cheers arrive through EventSub.
    A payload may batch several tips in its ``message`` list.
    """
    if not isinstance(event, Mapping) or event.get("type") != "donation":
        return []

    items = event.get("message")
    if isinstance(items, Mapping):
        items = [items]
    if not isinstance(items, list):
        LOGGER.warning(f"Donation event without a message list: {dict(event)!r}")
        return []

    events = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        events.append(
            {
                "username": item.get("name") or item.get("from") or "",
                "amount": item.get("amount", 0),
                "message": item.get("message") or "",
                "category": AlertCategory.DONATION.value,
            }
        )
    return events


class StreamlabsFeed:
    """Socket.IO client for the Streamlabs realtime API.

    ``sink`` receives one ``{username, amount, message, category}`` event per
    tip; the controller's ingest validates amounts and names.
    """

    def __init__(
        self,
        socket_token: str,
        sink: AlertSink,
        *,
        url: str = STREAMLABS_SOCKET_URL,
        reconnect_delay: float = 5.0,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        self.socket_token = socket_token
        self.sink = sink
        self.url = url
        self.sio = client or socketio.AsyncClient(
            reconnection=True, reconnection_delay=reconnect_delay
        )
        self.received = 0
        self.queued = 0

        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("event", self.handle_event)

    @property
    def connected(self) -> bool:
        return self.sio.connected

    async def _on_connect(self) -> None:
        LOGGER.info("Streamlabs socket connected")

    async def _on_disconnect(self, *args: Any) -> None:
        LOGGER.info("Streamlabs socket disconnected")

    async def handle_event(self, event: Any) -> None:
        for alert in donation_events(event):
            self.received += 1
            try:
                record = await self.sink(alert)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.exception(f"Failed to queue donation from {alert['username']}: {e}")
                continue
            if record is not None:
                self.queued += 1
            status = "queued" if record is not None else "ignored"
            LOGGER.info(f"Donation: {alert['username']} ({alert['amount']}) {status}")

    async def run(self) -> None:
        """Connect and block until the client gives up or is cancelled"""
        await self.sio.connect(f"{self.url}?token={self.socket_token}", transports=["websocket"])
        await self.sio.wait()

    async def close(self) -> None:
        if self.sio.connected:
            await self.sio.disconnect()
        LOGGER.info("Streamlabs feed closed")
