"""Duplicate-event predicate used by the queue store before admitting an alert."""

from __future__ import annotations

from collections.abc import Iterable

from shared.models.alert import AlertCandidate, AlertRecord

DEFAULT_DEDUP_WINDOW_MS = 5000


def is_duplicate(
    records: Iterable[AlertRecord],
    candidate: AlertCandidate,
    now: float,
    window_ms: int = DEFAULT_DEDUP_WINDOW_MS,
) -> bool:
    """Return True if a record with the same (username, amount, message) exists within the window.

    Records of any status count: a provider that re-fires an event after it already
    played must still be suppressed.
    """
    if window_ms <= 0:
        return False
    window = window_ms / 1000.0
    key = candidate.dedup_key()
    return any(r.dedup_key() == key and now - r.created_at < window for r in records)
