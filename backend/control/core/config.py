"""Control service configuration"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.text import CHEERMOTE_PREFIXES

logger = logging.getLogger(__name__)

# === Path Configuration ===
CONTROL_DIR = Path(__file__).parent.parent
BACKEND_DIR = CONTROL_DIR.parent
DATA_DIR = BACKEND_DIR / "data"

# EventSub scopes the broadcaster token must carry for alert ingestion
BROADCASTER_SCOPES = [
    "bits:read",  # Cheer EventSub
    "channel:read:subscriptions",  # Subscription EventSub
]


class ControlSettings(BaseSettings):
    """Control surface settings"""

    model_config = SettingsConfigDict(
        env_prefix="CONTROL_",
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0", description="API bind address")
    port: int = Field(default=8000, description="API port")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Relay
    relay_url: str = Field(default="ws://localhost:5175/ws", description="Relay WebSocket URL")
    reconnect_delay: float = Field(default=2.0, gt=0, description="Fixed reconnect backoff (s)")

    # Queue policy
    dedup_window_ms: int = Field(default=5000, ge=0, description="Duplicate event window")
    min_bits: int = Field(default=200, ge=0, description="Smallest cheer that becomes an alert")
    max_pending_alerts: int = Field(default=0, ge=0, description="0 = unbounded")
    emote_prefixes: list[str] = Field(default_factory=lambda: list(CHEERMOTE_PREFIXES))

    # Persistence
    state_backend: Literal["json", "postgres", "none"] = Field(default="json")
    state_path: Path = Field(default=DATA_DIR / "control_state.json")
    database_url: str = Field(default="", description="PostgreSQL URL for the postgres backend")

    # Twitch EventSub (ingestion is disabled unless all are set)
    twitch_client_id: str = Field(default="")
    twitch_client_secret: str = Field(default="")
    twitch_bot_id: str = Field(default="")
    twitch_broadcaster_id: str = Field(default="")
    twitch_access_token: str = Field(default="")
    twitch_refresh_token: str = Field(default="")

    # Streamlabs tips (donation alerts are disabled unless the socket token is set)
    streamlabs_socket_token: str = Field(default="", description="Socket API token")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    heartbeat_interval: float = Field(default=300.0, gt=0, description="Status log interval (s)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @model_validator(mode="after")
    def validate_database_url(self) -> "ControlSettings":
        """The postgres backend needs a postgresql:// URL"""
        if self.state_backend == "postgres" and not self.database_url.startswith("postgresql://"):
            raise ValueError("CONTROL_DATABASE_URL must start with 'postgresql://'")
        return self

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def twitch_enabled(self) -> bool:
        return all(
            (
                self.twitch_client_id,
                self.twitch_client_secret,
                self.twitch_bot_id,
                self.twitch_broadcaster_id,
                self.twitch_access_token,
                self.twitch_refresh_token,
            )
        )


    @property
    def streamlabs_enabled(self) -> bool:
        return bool(self.streamlabs_socket_token)

@lru_cache
def get_settings() -> ControlSettings:
    """Get cached settings instance"""
    return ControlSettings()
