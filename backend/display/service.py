"""Display service: wires the relay channel to the sequencer and the speakers."""

from __future__ import annotations

import asyncio
import logging

from display.config import DisplaySettings
from display.presentation import (
    CloudVoiceSpeaker,
    LocalVoiceSpeaker,
    SilentSpeaker,
    Speaker,
    VoiceRouter,
)
from display.sequencer import Sequencer, SequencerTiming
from shared.channel import SynchronizationChannel
from shared.models.overlay_settings import OverlayPresentationSettings
from shared.protocol import (
    Clear,
    Completed,
    ForcePlay,
    FullState,
    GateChanged,
    QueueSnapshot,
    Role,
    SettingsChanged,
    Skip,
    Started,
)

LOGGER = logging.getLogger("Display")


def build_speaker(settings: DisplaySettings) -> Speaker:
    if settings.silent:
        return SilentSpeaker()
    return VoiceRouter(
        cloud=CloudVoiceSpeaker(settings.tts_url, player=settings.audio_player),
        local=LocalVoiceSpeaker(settings.local_voice_command),
    )


class DisplayService:
    """Owns one SynchronizationChannel (role=display) and one Sequencer."""

    def __init__(
        self,
        settings: DisplaySettings,
        *,
        channel: SynchronizationChannel | None = None,
        speaker: Speaker | None = None,
    ) -> None:
        self.settings = settings
        self.channel = channel or SynchronizationChannel(
            settings.relay_url,
            Role.DISPLAY,
            reconnect_delay=settings.reconnect_delay,
        )
        self.speaker = speaker or build_speaker(settings)
        self.sequencer = Sequencer(
            self.speaker,
            self.report_completed,
            start_reporter=self.report_started,
            timing=SequencerTiming(
                inter_alert_cooldown_ms=settings.inter_alert_cooldown_ms,
                minimum_gap_ms=settings.minimum_gap_ms,
                startup_delay_ms=settings.startup_delay_ms,
                presentation_timeout_ms=settings.presentation_timeout_ms,
            ),
            settings=self._with_voice_override(OverlayPresentationSettings()),
            emote_prefixes=settings.emote_prefixes,
        )
        self._register_handlers()

    def _with_voice_override(
        self, settings: OverlayPresentationSettings
    ) -> OverlayPresentationSettings:
        if not self.settings.default_voice:
            return settings
        return settings.model_copy(update={"tts_voice": self.settings.default_voice})

    def _register_handlers(self) -> None:
        self.channel.on("full_state", self.on_full_state)
        self.channel.on("queue_snapshot", self.on_queue_snapshot)
        self.channel.on("gate_changed", self.on_gate_changed)
        self.channel.on("settings_changed", self.on_settings_changed)
        self.channel.on("skip", self.on_skip)
        self.channel.on("clear", self.on_clear)
        self.channel.on("force_play", self.on_force_play)
        self.channel.on_disconnect(self.on_disconnect)

    # ---

    async def on_full_state(self, message: FullState) -> None:
        LOGGER.info(
            f"Full state: gate={'open' if message.gate_open else 'closed'}, "
            f"{len(message.queue)} record(s)"
        )
        self.sequencer.apply_full_state(
            message.gate_open, message.queue, self._with_voice_override(message.settings)
        )

    async def on_queue_snapshot(self, message: QueueSnapshot) -> None:
        self.sequencer.apply_snapshot(message.queue)

    async def on_gate_changed(self, message: GateChanged) -> None:
        self.sequencer.set_gate(message.is_open)

    async def on_settings_changed(self, message: SettingsChanged) -> None:
        self.sequencer.update_settings(self._with_voice_override(message.settings))

    async def on_skip(self, message: Skip) -> None:
        self.sequencer.skip()

    async def on_clear(self, message: Clear) -> None:
        self.sequencer.clear()

    async def on_force_play(self, message: ForcePlay) -> None:
        self.sequencer.force_play(message.alert_id)

    async def on_disconnect(self) -> None:
        self.sequencer.on_channel_lost()

    async def report_started(self, alert_id: str) -> None:
        if not await self.channel.send(Started(alert_id=alert_id)):
            LOGGER.warning(f"Start of {alert_id} not delivered, control still sees it pending")

    async def report_completed(self, alert_id: str) -> None:
        if not await self.channel.send(Completed(alert_id=alert_id)):
            LOGGER.warning(f"Completion of {alert_id} not delivered, relies on resync")

    # ---

    async def start(self) -> None:
        await self.channel.connect()
        LOGGER.info(f"Display service connecting to {self.settings.relay_url}")

    async def stop(self) -> None:
        await self.sequencer.close()
        await self.channel.disconnect()
        for speaker in (self.speaker, getattr(self.speaker, "cloud", None)):
            if isinstance(speaker, CloudVoiceSpeaker):
                await speaker.close()
        LOGGER.info("Display service stopped")

    def status(self) -> dict:
        return {
            "connected": self.channel.connected,
            "connections": self.channel.connection_count,
            **self.sequencer.status(),
        }

    async def run_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
