"""Data models for queued alerts."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class AlertStatus(str, Enum):
    PENDING = "pending"
    PLAYING = "playing"
    PLAYED = "played"


class AlertCategory(str, Enum):
    BITS = "bits"
    DONATION = "donation"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


# Forward-legal transitions. pending -> played covers skip/delete-style completion of a
# record that never started; played is terminal.
_ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset({AlertStatus.PLAYING, AlertStatus.PLAYED}),
    AlertStatus.PLAYING: frozenset({AlertStatus.PLAYED}),
    AlertStatus.PLAYED: frozenset(),
}


def can_transition(current: AlertStatus, new: AlertStatus) -> bool:
    """Return True if moving from *current* to *new* is a forward transition."""
    return new in _ALLOWED_TRANSITIONS[current]


@dataclass
class AlertCandidate:
    """An incoming alert event before it is admitted to the queue."""

    source_username: str
    amount: float
    message: str = ""
    category: AlertCategory = AlertCategory.OTHER

    def dedup_key(self) -> tuple[str, float, str]:
        return (self.source_username, self.amount, self.message)


@dataclass
class AlertRecord:
    """Queued alert record."""

    id: str
    source_username: str
    amount: float
    message: str
    category: AlertCategory
    created_at: float  # epoch seconds
    status: AlertStatus = AlertStatus.PENDING

    def dedup_key(self) -> tuple[str, float, str]:
        return (self.source_username, self.amount, self.message)

    def with_status(self, status: AlertStatus) -> AlertRecord:
        return replace(self, status=status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_username": self.source_username,
            "amount": self.amount,
            "message": self.message,
            "category": self.category.value,
            "created_at": self.created_at,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> AlertRecord:
        return cls(
            id=str(data["id"]),
            source_username=str(data["source_username"]),
            amount=float(data["amount"]),
            message=str(data.get("message") or ""),
            category=AlertCategory(data.get("category", AlertCategory.OTHER.value)),
            created_at=float(data["created_at"]),
            status=AlertStatus(data.get("status", AlertStatus.PENDING.value)),
        )
