"""In-memory ordered alert queue with forward-only status transitions."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable

from shared.dedup import DEFAULT_DEDUP_WINDOW_MS, is_duplicate
from shared.models.alert import AlertCandidate, AlertRecord, AlertStatus, can_transition

logger = logging.getLogger("QueueStore")


def _new_id() -> str:
    return str(uuid.uuid4())


class QueueStore:
    """Ordered collection of alert records.

    Insertion order is the only ordering. The store does not enforce the single
    ``playing`` invariant: a replayed force-play can leave two records playing
    until the sequencer reconciles them.
    """

    def __init__(
        self,
        records: Iterable[AlertRecord] | None = None,
        *,
        dedup_window_ms: int = DEFAULT_DEDUP_WINDOW_MS,
        max_pending: int = 0,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._records: list[AlertRecord] = list(records or [])
        self.dedup_window_ms = dedup_window_ms
        self.max_pending = max_pending
        self._clock = clock
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def records(self) -> list[AlertRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def get(self, alert_id: str) -> AlertRecord | None:
        for record in self._records:
            if record.id == alert_id:
                return record
        return None

    def with_status(self, status: AlertStatus) -> list[AlertRecord]:
        return [r for r in self._records if r.status is status]

    def pending(self) -> list[AlertRecord]:
        return self.with_status(AlertStatus.PENDING)

    def playing(self) -> list[AlertRecord]:
        return self.with_status(AlertStatus.PLAYING)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, candidate: AlertCandidate) -> AlertRecord | None:
        """Admit *candidate* as a new pending record.

        Returns None when the candidate duplicates a recent record or the pending
        cap is reached.
        """
        now = self._clock()
        if is_duplicate(self._records, candidate, now, self.dedup_window_ms):
            logger.debug(
                f"Suppressed duplicate alert from {candidate.source_username} "
                f"({candidate.amount} {candidate.category.value})"
            )
            return None

        if self.max_pending and len(self.pending()) >= self.max_pending:
            logger.warning(
                f"Pending queue full ({self.max_pending}), dropping alert from "
                f"{candidate.source_username}"
            )
            return None

        record = AlertRecord(
            id=self._id_factory(),
            source_username=candidate.source_username,
            amount=candidate.amount,
            message=candidate.message,
            category=candidate.category,
            created_at=now,
            status=AlertStatus.PENDING,
        )
        self._records.append(record)
        logger.info(
            f"Queued alert {record.id} from {record.source_username} "
            f"({record.amount} {record.category.value})"
        )
        return record

    def set_status(self, alert_id: str, new_status: AlertStatus) -> bool:
        """Apply a forward transition. Unknown ids and illegal moves are no-ops."""
        for index, record in enumerate(self._records):
            if record.id != alert_id:
                continue
            if not can_transition(record.status, new_status):
                logger.debug(
                    f"Ignoring {record.status.value} -> {new_status.value} for {alert_id}"
                )
                return False
            self._records[index] = record.with_status(new_status)
            return True
        logger.debug(f"Ignoring status change for unknown alert {alert_id}")
        return False

    def remove(self, alert_id: str) -> bool:
        before = len(self._records)
        self._records = [r for r in self._records if r.id != alert_id]
        return len(self._records) != before

    def clear_pending(self) -> int:
        """Drop every pending record. Returns how many were removed."""
        return self._drop(AlertStatus.PENDING)

    def clear_played(self) -> int:
        """Drop every played record. Returns how many were removed."""
        return self._drop(AlertStatus.PLAYED)

    def replace_all(self, records: Iterable[AlertRecord]) -> None:
        self._records = list(records)

    def _drop(self, status: AlertStatus) -> int:
        before = len(self._records)
        self._records = [r for r in self._records if r.status is not status]
        return before - len(self._records)
