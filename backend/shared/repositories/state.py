"""Persistence for the control surface's queue, gate and overlay settings.

Three backends share one interface:
  - JsonStateRepository: a single JSON document written atomically
  - PgStateRepository: alert_queue / overlay_state tables via asyncpg
  - NullStateRepository: keeps nothing (tests, ephemeral runs)

Persistence is best-effort. A failed save is logged by the caller and never
blocks a queue mutation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import asyncpg

from shared.models.alert import AlertRecord
from shared.models.overlay_settings import OverlayPresentationSettings

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class PersistedState:
    gate_open: bool = True
    records: list[AlertRecord] = field(default_factory=list)
    settings: OverlayPresentationSettings = field(default_factory=OverlayPresentationSettings)

    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "gate_open": self.gate_open,
            "queue": [r.to_dict() for r in self.records],
            "settings": self.settings.model_dump(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PersistedState:
        return cls(
            gate_open=bool(data.get("gate_open", True)),
            records=[AlertRecord.from_dict(r) for r in data.get("queue", [])],
            settings=OverlayPresentationSettings.model_validate(data.get("settings") or {}),
        )


class StateRepository(Protocol):
    async def load(self) -> PersistedState | None: ...

    async def save(self, state: PersistedState) -> None: ...


# ---------------------------------------------------------------------------
# NullStateRepository
# ---------------------------------------------------------------------------


class NullStateRepository:
    """Discards everything; load() always reports no prior state."""

    async def load(self) -> PersistedState | None:
        return None

    async def save(self, state: PersistedState) -> None:
        return None


# ---------------------------------------------------------------------------
# JsonStateRepository
# ---------------------------------------------------------------------------


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class JsonStateRepository:
    """Single JSON file, replaced atomically on every save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> PersistedState | None:
        if not self.path.exists():
            return None
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            return PersistedState.from_dict(json.loads(raw))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {type(e).__name__}: {e}")
            return None

    async def save(self, state: PersistedState) -> None:
        await asyncio.to_thread(_atomic_write_json, self.path, state.to_dict())


# ---------------------------------------------------------------------------
# PgStateRepository
# ---------------------------------------------------------------------------

_QUEUE_COLUMNS = "id, source_username, amount, message, category, created_at, status"


class PgStateRepository:
    """Pure SQL operations for the alert_queue and overlay_state tables.

    ``alert_queue.position`` preserves arrival order; ``overlay_state`` is a
    single-row table keyed by ``id = 1``.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS alert_queue (
                    id               TEXT PRIMARY KEY,
                    position         INTEGER NOT NULL,
                    source_username  TEXT NOT NULL,
                    amount           DOUBLE PRECISION NOT NULL,
                    message          TEXT NOT NULL DEFAULT '',
                    category         TEXT NOT NULL,
                    created_at       DOUBLE PRECISION NOT NULL,
                    status           TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS overlay_state (
                    id          INTEGER PRIMARY KEY DEFAULT 1,
                    gate_open   BOOLEAN NOT NULL DEFAULT TRUE,
                    settings    JSONB NOT NULL DEFAULT '{}'::jsonb,
                    updated_at  TIMESTAMPTZ DEFAULT NOW()
                );
                """
            )

    async def load(self) -> PersistedState | None:
        async with self.pool.acquire() as conn:
            state_row = await conn.fetchrow(
                "SELECT gate_open, settings FROM overlay_state WHERE id = 1"
            )
            rows = await conn.fetch(
                f"SELECT {_QUEUE_COLUMNS} FROM alert_queue ORDER BY position ASC"
            )
        if state_row is None and not rows:
            return None

        settings_raw = state_row["settings"] if state_row else None
        if isinstance(settings_raw, str):
            settings_raw = json.loads(settings_raw)
        return PersistedState(
            gate_open=state_row["gate_open"] if state_row else True,
            records=[AlertRecord.from_dict(dict(row)) for row in rows],
            settings=OverlayPresentationSettings.model_validate(settings_raw or {}),
        )

    async def save(self, state: PersistedState) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM alert_queue")
                await conn.executemany(
                    f"INSERT INTO alert_queue (position, {_QUEUE_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                    [
                        (
                            position,
                            r.id,
                            r.source_username,
                            r.amount,
                            r.message,
                            r.category.value,
                            r.created_at,
                            r.status.value,
                        )
                        for position, r in enumerate(state.records)
                    ],
                )
                await conn.execute(
                    """
                    INSERT INTO overlay_state (id, gate_open, settings, updated_at)
                    VALUES (1, $1, $2::jsonb, NOW())
                    ON CONFLICT (id) DO UPDATE
                    SET gate_open = EXCLUDED.gate_open,
                        settings = EXCLUDED.settings,
                        updated_at = NOW()
                    """,
                    state.gate_open,
                    json.dumps(state.settings.model_dump()),
                )
