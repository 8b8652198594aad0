# tests/conftest.py
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from itertools import count

import pytest
import pytest_asyncio

from display.presentation import CancellationToken, PresentationError
from display.sequencer import Sequencer, SequencerTiming
from shared.models.alert import AlertCategory, AlertRecord, AlertStatus
from shared.models.overlay_settings import OverlayPresentationSettings

_ID_COUNTER = count(1)


class FakeTask:
    """Presentation task finishing after *duration* seconds, or on finish() when None."""

    def __init__(self, text: str, voice: str, volume: float, duration: float | None, fail: bool):
        self.text = text
        self.voice = voice
        self.volume = volume
        self.fail = fail
        self.token = CancellationToken()
        self.cancel_calls = 0
        self._finished = asyncio.Event()
        if duration is not None:
            asyncio.get_running_loop().call_later(duration, self._finished.set)

    async def await_completion(self) -> None:
        await self._finished.wait()
        if self.fail:
            raise PresentationError("synthesis failed")

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.token.cancel()
        self._finished.set()

    def finish(self) -> None:
        self._finished.set()


class FakeSpeaker:
    def __init__(self, duration: float | None = 0.01, fail: bool = False) -> None:
        self.duration = duration
        self.fail = fail
        self.tasks: list[FakeTask] = []

    def speak(self, text: str, voice: str, volume: float) -> FakeTask:
        task = FakeTask(text, voice, volume, self.duration, self.fail)
        self.tasks.append(task)
        return task

    @property
    def texts(self) -> list[str]:
        return [t.text for t in self.tasks]


class ReportCollector:
    def __init__(self) -> None:
        self.reports: list[str] = []

    async def __call__(self, alert_id: str) -> None:
        self.reports.append(alert_id)


def make_record(
    alert_id: str | None = None,
    *,
    username: str = "viewer",
    amount: float = 100,
    message: str = "",
    category: AlertCategory = AlertCategory.BITS,
    status: AlertStatus = AlertStatus.PENDING,
    created_at: float | None = None,
) -> AlertRecord:
    return AlertRecord(
        id=alert_id or f"alert-{next(_ID_COUNTER)}",
        source_username=username,
        amount=amount,
        message=message,
        category=category,
        created_at=created_at if created_at is not None else time.time(),
        status=status,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def speaker() -> FakeSpeaker:
    return FakeSpeaker()


@pytest.fixture
def reporter() -> ReportCollector:
    return ReportCollector()


@pytest.fixture
def timing() -> SequencerTiming:
    return SequencerTiming(
        inter_alert_cooldown_ms=200,
        minimum_gap_ms=10,
        startup_delay_ms=10,
        presentation_timeout_ms=2000,
    )


@pytest.fixture
def overlay_settings() -> OverlayPresentationSettings:
    return OverlayPresentationSettings(alert_duration=50)


@pytest_asyncio.fixture
async def sequencer(speaker, reporter, timing, overlay_settings):
    seq = Sequencer(speaker, reporter, timing=timing, settings=overlay_settings)
    yield seq
    await seq.close()
