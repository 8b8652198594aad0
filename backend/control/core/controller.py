"""Control-side source of truth for the alert queue, the gate and overlay settings."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel

from control.core.ingestion import IngestionFilter
from shared.channel import SynchronizationChannel
from shared.gate import Gate
from shared.models.alert import AlertRecord, AlertStatus
from shared.models.overlay_settings import OverlayPresentationSettings
from shared.protocol import (
    Clear,
    Completed,
    ForcePlay,
    FullState,
    GateChanged,
    QueueSnapshot,
    SettingsChanged,
    Skip,
    Started,
)
from shared.queue_store import QueueStore
from shared.repositories.state import NullStateRepository, PersistedState, StateRepository

LOGGER = logging.getLogger("Controller")


class AlertController:
    """Owns queue/gate/settings truth and pushes every change to the relay.

    Mutations are serialized with a lock so that the persisted state and the
    broadcast snapshot always reflect the same store contents.
    """

    def __init__(
        self,
        *,
        repository: StateRepository | None = None,
        ingestion: IngestionFilter | None = None,
        dedup_window_ms: int = 5000,
        max_pending: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository or NullStateRepository()
        self.ingestion = ingestion or IngestionFilter()
        self.store = QueueStore(dedup_window_ms=dedup_window_ms, max_pending=max_pending, clock=clock)
        self.gate = Gate()
        self.settings = OverlayPresentationSettings()
        self.channel: SynchronizationChannel | None = None
        self.completions_received = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach_channel(self, channel: SynchronizationChannel) -> None:
        self.channel = channel
        channel.on("started", self.handle_started)
        channel.on("completed", self.handle_completed)
        channel.on_connect(self.push_full_state)

    async def load(self) -> None:
        """Restore persisted state. A missing or unreadable state starts empty."""
        try:
            state = await self.repository.load()
        except Exception as e:
            LOGGER.warning(f"Failed to load persisted state: {type(e).__name__}: {e}")
            return
        if state is None:
            LOGGER.info("No persisted state, starting with an empty queue")
            return
        self.store.replace_all(state.records)
        self.gate.set(state.gate_open)
        self.settings = state.settings
        LOGGER.info(
            f"Restored {len(state.records)} record(s), "
            f"gate {'open' if state.gate_open else 'closed'}"
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def full_state(self) -> FullState:
        return FullState(
            gate_open=self.gate.is_open,
            queue=self.store.records,
            settings=self.settings,
        )

    def status(self) -> dict:
        return {
            "gate_open": self.gate.is_open,
            "queue_length": len(self.store),
            "pending": len(self.store.pending()),
            "playing": [r.id for r in self.store.playing()],
            "played": len(self.store.with_status(AlertStatus.PLAYED)),
            "relay_connected": self.channel is not None and self.channel.connected,
            "completions_received": self.completions_received,
            "ingestion_dropped": self.ingestion.dropped,
        }

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, event: Mapping[str, Any], *, manual: bool = False) -> AlertRecord | None:
        """Filter, admit and broadcast one alert event. None when dropped or suppressed."""
        candidate = self.ingestion.accept(event, enforce_minimum=not manual)
        if candidate is None:
            return None
        async with self._lock:
            record = self.store.append(candidate)
            if record is None:
                return None
            await self._commit()
        return record

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    async def set_gate(self, is_open: bool) -> bool:
        async with self._lock:
            if self.gate.set(is_open):
                LOGGER.info(f"Gate {'opened' if is_open else 'closed'}")
                await self._persist()
            await self._send(GateChanged(is_open=self.gate.is_open))
        return self.gate.is_open

    async def toggle_gate(self) -> bool:
        async with self._lock:
            is_open = self.gate.toggle()
            LOGGER.info(f"Gate {'opened' if is_open else 'closed'}")
            await self._persist()
            await self._send(GateChanged(is_open=is_open))
        return is_open

    async def skip(self) -> list[str]:
        """Mark the playing record(s) played and tell the display to stop."""
        async with self._lock:
            skipped = [r.id for r in self.store.playing()]
            for alert_id in skipped:
                self.store.set_status(alert_id, AlertStatus.PLAYED)
            if skipped:
                LOGGER.info(f"Skipped {', '.join(skipped)}")
            await self._send(Skip())
            await self._commit()
        return skipped

    async def clear(self) -> int:
        async with self._lock:
            removed = self.store.clear_pending()
            LOGGER.info(f"Cleared {removed} pending alert(s)")
            await self._send(Clear())
            await self._commit()
        return removed

    async def clear_played(self) -> int:
        async with self._lock:
            removed = self.store.clear_played()
            if removed:
                await self._commit()
        return removed

    async def remove(self, alert_id: str) -> bool:
        async with self._lock:
            if not self.store.remove(alert_id):
                return False
            LOGGER.info(f"Removed {alert_id}")
            await self._commit()
        return True

    async def force_play(self, alert_id: str) -> bool:
        """Jump a pending record to playing. Unknown or non-pending ids return False."""
        async with self._lock:
            record = self.store.get(alert_id)
            if record is None or record.status is not AlertStatus.PENDING:
                return False
            for playing in self.store.playing():
                self.store.set_status(playing.id, AlertStatus.PLAYED)
            self.store.set_status(alert_id, AlertStatus.PLAYING)
            LOGGER.info(f"Force-play {alert_id}")
            await self._send(ForcePlay(alert_id=alert_id))
            await self._commit()
        return True

    async def update_settings(self, patch: Mapping[str, Any]) -> OverlayPresentationSettings:
        """Merge *patch* into the settings bag. Raises pydantic.ValidationError on bad values."""
        async with self._lock:
            self.settings = self.settings.merged(dict(patch))
            await self._persist()
            await self._send(SettingsChanged(settings=self.settings))
        return self.settings

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    async def handle_started(self, message: Started) -> None:
        """Mirror the display's local playback so clear and skip see the record as playing.

        Only persisted: the display already knows, and the next snapshot carries it.
        """
        async with self._lock:
            if not self.store.set_status(message.alert_id, AlertStatus.PLAYING):
                LOGGER.debug(f"Start of {message.alert_id} ignored")
                return
            LOGGER.info(f"Display started {message.alert_id}")
            await self._persist()

    async def handle_completed(self, message: Completed) -> None:
        self.completions_received += 1
        async with self._lock:
            if not self.store.set_status(message.alert_id, AlertStatus.PLAYED):
                LOGGER.debug(f"Completion for {message.alert_id} already applied")
                return
            LOGGER.info(f"Display completed {message.alert_id}")
            await self._commit()

    async def push_full_state(self) -> None:
        await self._send(self.full_state())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _commit(self) -> None:
        await self._persist()
        await self._send(QueueSnapshot(queue=self.store.records))

    async def _persist(self) -> None:
        state = PersistedState(
            gate_open=self.gate.is_open,
            records=self.store.records,
            settings=self.settings,
        )
        try:
            await self.repository.save(state)
        except Exception as e:
            LOGGER.warning(f"Failed to persist state: {type(e).__name__}: {e}")

    async def _send(self, message: BaseModel) -> None:
        if self.channel is not None:
            await self.channel.send(message)
