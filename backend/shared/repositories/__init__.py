"""Shared repository layer for minaqueue services."""

from .state import (
    JsonStateRepository,
    NullStateRepository,
    PersistedState,
    PgStateRepository,
    StateRepository,
)

__all__ = [
    "JsonStateRepository",
    "NullStateRepository",
    "PersistedState",
    "PgStateRepository",
    "StateRepository",
]
