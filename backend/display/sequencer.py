"""Display-side alert sequencer.

Runs on a single event loop. Every public method is synchronous and mutates
state immediately; timers and presentations are the only suspension points.

Per alert: pending -> playing -> played. Globally the sequencer is either idle
(``currently_playing_id is None``) or presenting exactly one alert.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from display.presentation import PresentationTask, Speaker
from shared.gate import Gate
from shared.models.alert import AlertRecord, AlertStatus
from shared.models.overlay_settings import OverlayPresentationSettings
from shared.queue_store import QueueStore
from shared.text import CHEERMOTE_PREFIXES, strip_inline_tokens

LOGGER = logging.getLogger("Sequencer")

AlertReporter = Callable[[str], Awaitable[Any]]


@dataclass
class SequencerTiming:
    """Sequencer timers, all in milliseconds."""

    inter_alert_cooldown_ms: int = 2000
    minimum_gap_ms: int = 100
    startup_delay_ms: int = 100
    presentation_timeout_ms: int = 30000


class _Presentation:
    """One started alert: its speech task, the runner awaiting it and a cancelled flag."""

    def __init__(self, alert_id: str, task: PresentationTask | None) -> None:
        self.alert_id = alert_id
        self.task = task
        self.runner: asyncio.Task | None = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None:
            self.task.cancel()
        if self.runner is not None and not self.runner.done():
            self.runner.cancel()


class Sequencer:
    def __init__(
        self,
        speaker: Speaker,
        reporter: AlertReporter,
        *,
        start_reporter: AlertReporter | None = None,
        timing: SequencerTiming | None = None,
        settings: OverlayPresentationSettings | None = None,
        gate_open: bool = True,
        emote_prefixes: Iterable[str] = CHEERMOTE_PREFIXES,
    ) -> None:
        self.speaker = speaker
        self.reporter = reporter
        self.start_reporter = start_reporter
        self.timing = timing or SequencerTiming()
        self.settings = settings or OverlayPresentationSettings()
        self.emote_prefixes = tuple(emote_prefixes)

        self.store = QueueStore(dedup_window_ms=0)
        self.gate = Gate(gate_open)

        # Runtime state. Only already_presented survives a channel loss.
        self.currently_playing_id: str | None = None
        self.last_completion_time: float | None = None
        self.scheduled_id: str | None = None
        self.already_presented: set[str] = set()

        self.presented_count = 0
        self._arm_handle: asyncio.TimerHandle | None = None
        self._current: _Presentation | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Inbound state
    # ------------------------------------------------------------------

    def apply_full_state(
        self,
        gate_open: bool,
        records: Iterable[AlertRecord],
        settings: OverlayPresentationSettings,
    ) -> None:
        self.settings = settings
        self.apply_snapshot(records, evaluate=False)
        self.set_gate(gate_open)

    def apply_snapshot(self, records: Iterable[AlertRecord], *, evaluate: bool = True) -> None:
        """Replace the local queue mirror, reconciling it with local playback.

        The locally playing id stays ``playing`` whatever the snapshot says. Any
        other ``playing`` record is a stale or replayed status: it becomes
        ``played`` if this surface already presented it, ``pending`` otherwise.
        """
        local_id = self.currently_playing_id
        reconciled: list[AlertRecord] = []
        redelivered: list[str] = []
        for record in records:
            if record.id == local_id:
                record = record.with_status(AlertStatus.PLAYING)
            elif record.status is AlertStatus.PLAYING:
                if record.id in self.already_presented:
                    record = record.with_status(AlertStatus.PLAYED)
                    redelivered.append(record.id)
                else:
                    record = record.with_status(AlertStatus.PENDING)
            reconciled.append(record)
        self.store.replace_all(reconciled)

        if local_id is not None and self.store.get(local_id) is None:
            LOGGER.info(f"Alert {local_id} removed upstream while playing, stopping it")
            self._abort_current(reevaluate=False)

        if self.scheduled_id is not None and self._current is None:
            armed = self.store.get(self.scheduled_id)
            if armed is None or armed.status is not AlertStatus.PENDING:
                self._cancel_arm()

        for alert_id in redelivered:
            self._report(alert_id)
        if evaluate:
            self._evaluate()

    def update_settings(self, settings: OverlayPresentationSettings) -> None:
        self.settings = settings

    def set_gate(self, is_open: bool) -> None:
        changed = self.gate.set(is_open)
        if is_open:
            if changed:
                LOGGER.info("Gate opened")
            self._evaluate()
            return

        if changed:
            LOGGER.info("Gate closed")
        self._cancel_arm()
        if self._current is not None:
            LOGGER.info(f"Gate closed while presenting {self._current.alert_id}, completing it")
            self._abort_current(reevaluate=False)

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def skip(self) -> bool:
        """Force-complete the current alert. Returns False when idle."""
        if self._current is None:
            LOGGER.debug("Skip ignored, nothing playing")
            return False
        LOGGER.info(f"Skipping {self._current.alert_id}")
        self._abort_current(reevaluate=True)
        return True

    def clear(self) -> int:
        """Drop all pending records. A playing record is unaffected."""
        removed = self.store.clear_pending()
        if self.scheduled_id is not None and self._current is None:
            if self.store.get(self.scheduled_id) is None:
                self._cancel_arm()
        LOGGER.info(f"Cleared {removed} pending alert(s)")
        return removed

    def force_play(self, alert_id: str) -> bool:
        """Start *alert_id* now, out of order and regardless of the gate.

        Returns True if a presentation was started.
        """
        record = self.store.get(alert_id)
        if record is None:
            LOGGER.debug(f"Force-play ignored, unknown alert {alert_id}")
            return False
        if alert_id == self.currently_playing_id:
            LOGGER.debug(f"Force-play ignored, {alert_id} is already playing")
            return False
        if record.status is AlertStatus.PLAYED:
            LOGGER.debug(f"Force-play ignored, {alert_id} already played")
            return False
        if alert_id in self.already_presented:
            self.store.set_status(alert_id, AlertStatus.PLAYED)
            self._report(alert_id)
            return False

        if self._current is not None:
            self._abort_current(reevaluate=False)
        self._cancel_arm()
        LOGGER.info(f"Force-playing {alert_id}")
        self._start(record)
        return True

    def on_channel_lost(self) -> None:
        """Drop the armed selection; an in-flight presentation keeps running."""
        self._cancel_arm()

    async def close(self) -> None:
        self._closed = True
        self._cancel_arm()
        if self._current is not None:
            self._current.cancel()
            self._current = None
            self.currently_playing_id = None
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_idle(self) -> bool:
        return self._current is None

    def status(self) -> dict:
        return {
            "gate_open": self.gate.is_open,
            "currently_playing_id": self.currently_playing_id,
            "scheduled_id": self.scheduled_id,
            "pending": len(self.store.pending()),
            "queue_length": len(self.store),
            "presented": self.presented_count,
        }

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _evaluate(self) -> None:
        if self._closed or self._current is not None or not self.gate.is_open:
            return

        for record in self.store.pending():
            if record.id in self.already_presented:
                LOGGER.info(f"Alert {record.id} was already presented, marking played")
                self.store.set_status(record.id, AlertStatus.PLAYED)
                self._report(record.id)
                continue
            self._arm(record.id)
            return

        if self.scheduled_id is not None:
            self._cancel_arm()

    def _arm(self, alert_id: str) -> None:
        if self.scheduled_id == alert_id and self._arm_handle is not None:
            return
        self._cancel_arm()

        loop = asyncio.get_running_loop()
        delay = self._arm_delay(loop.time())
        self.scheduled_id = alert_id
        self._arm_handle = loop.call_later(delay, self._on_arm_fired, alert_id)
        LOGGER.debug(f"Armed {alert_id} in {delay * 1000:.0f}ms")

    def _arm_delay(self, now: float) -> float:
        timing = self.timing
        if self.last_completion_time is None:
            return timing.startup_delay_ms / 1000
        elapsed_ms = (now - self.last_completion_time) * 1000
        return max(timing.minimum_gap_ms, timing.inter_alert_cooldown_ms - elapsed_ms) / 1000

    def _cancel_arm(self) -> None:
        if self._arm_handle is not None:
            self._arm_handle.cancel()
            self._arm_handle = None
        if self._current is None:
            self.scheduled_id = None

    def _on_arm_fired(self, alert_id: str) -> None:
        self._arm_handle = None
        if self.scheduled_id != alert_id:
            return
        record = self.store.get(alert_id)
        if (
            self._closed
            or not self.gate.is_open
            or self._current is not None
            or record is None
            or record.status is not AlertStatus.PENDING
            or alert_id in self.already_presented
        ):
            self.scheduled_id = None
            self._evaluate()
            return
        self._start(record)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def _start(self, record: AlertRecord) -> None:
        self.store.set_status(record.id, AlertStatus.PLAYING)
        self.currently_playing_id = record.id
        self.scheduled_id = record.id
        self.already_presented.add(record.id)
        self.presented_count += 1

        text = strip_inline_tokens(record.message, self.emote_prefixes)
        minimum_ms = self.settings.minimum_display_ms(text)
        task: PresentationTask | None
        try:
            task = self.speaker.speak(text, self.settings.tts_voice, self.settings.tts_volume)
        except Exception as e:
            LOGGER.warning(f"Speech for {record.id} failed to start: {type(e).__name__}: {e}")
            task = None

        presentation = _Presentation(record.id, task)
        self._current = presentation
        LOGGER.info(
            f"Presenting {record.id} from {record.source_username} "
            f"({record.amount} {record.category.value}), min {minimum_ms}ms"
        )
        presentation.runner = self._spawn(
            self._run_presentation(presentation, minimum_ms),
            name=f"present-{record.id}",
        )
        if self.start_reporter is not None:
            self._spawn(self._send_started(record.id), name=f"started-{record.id}")

    async def _run_presentation(self, presentation: _Presentation, minimum_ms: int) -> None:
        await asyncio.gather(
            asyncio.sleep(minimum_ms / 1000),
            self._await_speech(presentation),
        )
        if presentation.cancelled or self._current is not presentation:
            return
        self._complete(presentation, reevaluate=True)

    async def _await_speech(self, presentation: _Presentation) -> None:
        task = presentation.task
        if task is None:
            return
        timeout = self.timing.presentation_timeout_ms / 1000
        try:
            await asyncio.wait_for(task.await_completion(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning(f"Speech for {presentation.alert_id} timed out after {timeout}s")
            task.cancel()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.warning(f"Speech for {presentation.alert_id} failed: {type(e).__name__}: {e}")

    def _abort_current(self, *, reevaluate: bool) -> None:
        presentation = self._current
        if presentation is None:
            return
        presentation.cancel()
        self._complete(presentation, reevaluate=reevaluate)

    def _complete(self, presentation: _Presentation, *, reevaluate: bool) -> None:
        alert_id = presentation.alert_id
        self._current = None
        self.currently_playing_id = None
        self.scheduled_id = None
        self.store.set_status(alert_id, AlertStatus.PLAYED)
        self.last_completion_time = asyncio.get_running_loop().time()
        LOGGER.info(f"Completed {alert_id}")
        self._report(alert_id)
        if reevaluate:
            self._evaluate()

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _report(self, alert_id: str) -> None:
        self._spawn(self._send_report(alert_id), name=f"report-{alert_id}")

    async def _send_report(self, alert_id: str) -> None:
        try:
            await self.reporter(alert_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.warning(f"Completion report for {alert_id} failed: {type(e).__name__}: {e}")

    async def _send_started(self, alert_id: str) -> None:
        try:
            await self.start_reporter(alert_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.warning(f"Start report for {alert_id} failed: {type(e).__name__}: {e}")

    def _spawn(self, coro: Awaitable[Any], *, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
