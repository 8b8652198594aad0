"""Overlay presentation settings bag shared by control and display."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_VOICE = "Brian"


class OverlayPresentationSettings(BaseModel):
    """Visual and audio settings for the overlay.

    The Sequencer only reads ``alert_duration``, the length bonus fields and the
    voice/volume pair; everything else is passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    # Visuals
    alert_image_url: str | None = None
    alert_image_size: int = 150
    font_family: str = "Segoe UI"
    font_size: int = 24
    username_color: str = "#F5E6D3"
    amount_color: str = "#FF99CC"
    message_color: str = "#F5E6D3"
    alert_background_color: str = "#1A1025"
    alert_border_color: str = "#B766D6"
    show_amount: bool = True
    show_message: bool = True

    # Timing (milliseconds)
    alert_duration: int = Field(default=5000, ge=0, description="Minimum display time")
    length_bonus_ms_per_char: int = Field(default=0, ge=0)
    max_length_bonus_ms: int = Field(default=0, ge=0)

    # TTS
    tts_voice: str = DEFAULT_VOICE
    tts_volume: float = Field(default=1.0, ge=0.0, le=1.0)

    def minimum_display_ms(self, message: str) -> int:
        """Minimum display time for *message*, including the capped length bonus."""
        bonus = min(len(message) * self.length_bonus_ms_per_char, self.max_length_bonus_ms)
        return self.alert_duration + bonus

    def merged(self, patch: dict) -> OverlayPresentationSettings:
        """Return a copy with *patch* applied and validated."""
        data = self.model_dump()
        data.update(patch)
        return OverlayPresentationSettings.model_validate(data)
