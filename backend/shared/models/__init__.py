"""Shared data models for all minaqueue services."""

from .alert import AlertCandidate, AlertCategory, AlertRecord, AlertStatus, can_transition
from .overlay_settings import DEFAULT_VOICE, OverlayPresentationSettings

__all__ = [
    "DEFAULT_VOICE",
    "AlertCandidate",
    "AlertCategory",
    "AlertRecord",
    "AlertStatus",
    "OverlayPresentationSettings",
    "can_transition",
]
