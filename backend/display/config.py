"""Display service configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.text import CHEERMOTE_PREFIXES

logger = logging.getLogger(__name__)

DISPLAY_DIR = Path(__file__).parent
BACKEND_DIR = DISPLAY_DIR.parent


class DisplaySettings(BaseSettings):
    """Display (sequencer + speech) settings"""

    model_config = SettingsConfigDict(
        env_prefix="DISPLAY_",
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Health server
    host: str = Field(default="0.0.0.0", description="Health server bind address")
    port: int = Field(default=4344, description="Health server port")

    # Relay
    relay_url: str = Field(default="ws://localhost:5175/ws", description="Relay WebSocket URL")
    reconnect_delay: float = Field(default=2.0, gt=0, description="Fixed reconnect backoff (s)")
    tts_url: str = Field(default="http://localhost:5175/tts", description="Relay TTS proxy URL")

    # Speech
    audio_player: str = Field(default="ffplay", description="Player used for cloud voice audio")
    local_voice_command: str = Field(default="espeak-ng", description="Local synthesizer")
    silent: bool = Field(default=False, description="Skip audio, wait an estimated read time")
    default_voice: str = Field(default="", description="Overrides the overlay voice when set")
    emote_prefixes: list[str] = Field(default_factory=lambda: list(CHEERMOTE_PREFIXES))

    # Sequencer timing (ms)
    inter_alert_cooldown_ms: int = Field(default=2000, ge=0)
    minimum_gap_ms: int = Field(default=100, ge=0)
    startup_delay_ms: int = Field(default=100, ge=0)
    presentation_timeout_ms: int = Field(default=30000, gt=0)

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
def get_settings() -> DisplaySettings:
    """Get cached settings instance"""
    return DisplaySettings()
