"""Core modules for the control service."""

from .config import BROADCASTER_SCOPES, DATA_DIR, ControlSettings, get_settings
from .controller import AlertController
from .ingestion import IngestionFilter

__all__ = [
    # Settings
    "get_settings",
    "ControlSettings",
    # Path Constants
    "DATA_DIR",
    # Scope Constants
    "BROADCASTER_SCOPES",
    # Services
    "AlertController",
    "IngestionFilter",
]
