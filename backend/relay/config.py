"""Relay server configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.overlay_settings import DEFAULT_VOICE

logger = logging.getLogger(__name__)

RELAY_DIR = Path(__file__).parent
BACKEND_DIR = RELAY_DIR.parent


class RelaySettings(BaseSettings):
    """Relay (broadcaster + TTS proxy) settings"""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5175, description="HTTP + WebSocket port")

    identify_timeout: float = Field(
        default=10.0, gt=0, description="Seconds a connection may stay unidentified"
    )
    ws_heartbeat: float = Field(default=30.0, gt=0, description="WebSocket ping interval (s)")
    heartbeat_interval: float = Field(default=300.0, gt=0, description="Status log interval (s)")

    # TTS proxy
    tts_upstream_url: str = Field(
        default="https://api.streamelements.com/kappa/v2/speech",
        description="Upstream speech endpoint, called with ?voice=&text=",
    )
    tts_default_voice: str = Field(default=DEFAULT_VOICE, description="Voice when none is given")
    tts_timeout: float = Field(default=10.0, gt=0, description="Upstream request timeout (s)")
    tts_cache_size: int = Field(default=32, ge=1)
    tts_cache_ttl: float = Field(default=300.0, gt=0)

    log_level: str = Field(default="INFO", description="Logging level")

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


@lru_cache
def get_settings() -> RelaySettings:
    """Get cached settings instance"""
    return RelaySettings()
