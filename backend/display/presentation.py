"""Speech presentation adapters.

Every speaker returns a PresentationTask: a handle with ``await_completion()``
and ``cancel()``. The Sequencer only depends on that contract, so cloud, local
and silent voices are interchangeable behind VoiceRouter.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from typing import Protocol

import aiohttp

from shared.models.overlay_settings import DEFAULT_VOICE

LOGGER = logging.getLogger("Presentation")

# StreamElements voice ids served by the relay's /tts proxy. Anything else is
# treated as a local voice name.
STREAMELEMENTS_VOICES: frozenset[str] = frozenset(
    {
        "Brian", "Amy", "Emma", "Joanna", "Kendra", "Kimberly", "Salli", "Joey",
        "Justin", "Matthew", "Ivy", "Nicole", "Russell", "Geraint", "Celine",
        "Mathieu", "Hans", "Marlene", "Vicki", "Conchita", "Enrique", "Miguel",
        "Penelope", "Carla", "Giorgio", "Mizuki", "Takumi", "Seoyeon", "Zhiyu",
        "Vitoria", "Ricardo", "Ines", "Cristiano", "Tatyana", "Maxim",
    }
)


class PresentationError(RuntimeError):
    """Raised by a presentation task that failed to play."""


def is_cloud_voice(voice: str) -> bool:
    return voice in STREAMELEMENTS_VOICES


class CancellationToken:
    """One-way cancelled flag owned by a single presentation."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class PresentationTask(Protocol):
    token: CancellationToken

    async def await_completion(self) -> None: ...

    def cancel(self) -> None: ...


class Speaker(Protocol):
    def speak(self, text: str, voice: str, volume: float) -> PresentationTask: ...


class CoroutinePresentationTask:
    """PresentationTask backed by an asyncio task.

    ``await_completion()`` returns normally on finish or cancellation and
    re-raises the coroutine's own error.
    """

    def __init__(self, factory: Callable[[CancellationToken], Awaitable[None]], name: str) -> None:
        self.token = CancellationToken()
        self._task = asyncio.create_task(factory(self.token), name=name)

    async def await_completion(self) -> None:
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return
        exc = self._task.exception()
        if exc is not None:
            raise exc

    def cancel(self) -> None:
        self.token.cancel()
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


async def _noop(_token: CancellationToken) -> None:
    return None


async def run_process(*argv: str, terminate_timeout: float = 2.0) -> None:
    """Run a player/synth process to completion, terminating it on cancellation."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=terminate_timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        raise
    if proc.returncode != 0:
        detail = (stderr or b"").decode("utf-8", "replace").strip()[:200]
        raise PresentationError(f"{argv[0]} exited with {proc.returncode}: {detail}")


# ---------------------------------------------------------------------------
# Speakers
# ---------------------------------------------------------------------------


class CloudVoiceSpeaker:
    """Fetches synthesized audio from the relay's /tts proxy and plays it with ffplay."""

    def __init__(
        self,
        tts_url: str,
        *,
        player: str = "ffplay",
        session: aiohttp.ClientSession | None = None,
        fetch_timeout: float = 10.0,
    ) -> None:
        self.tts_url = tts_url
        self.player = player
        self.fetch_timeout = fetch_timeout
        self._session = session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def speak(self, text: str, voice: str, volume: float) -> PresentationTask:
        if not text:
            return CoroutinePresentationTask(_noop, name="speak-empty")
        if not is_cloud_voice(voice):
            LOGGER.warning(f"Voice '{voice}' not found, using {DEFAULT_VOICE}")
            voice = DEFAULT_VOICE

        async def _play(token: CancellationToken) -> None:
            audio = await self._fetch(text, voice)
            if token.cancelled:
                return
            await self._play_bytes(audio, volume)

        return CoroutinePresentationTask(_play, name=f"speak-cloud-{voice}")

    async def _fetch(self, text: str, voice: str) -> bytes:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        LOGGER.info(f"Speaking: \"{text[:50]}{'...' if len(text) > 50 else ''}\" with voice: {voice}")
        async with self._session.get(
            self.tts_url,
            params={"voice": voice, "text": text},
            timeout=aiohttp.ClientTimeout(total=self.fetch_timeout),
        ) as resp:
            if resp.status != 200:
                raise PresentationError(f"TTS proxy returned HTTP {resp.status}")
            return await resp.read()

    async def _play_bytes(self, audio: bytes, volume: float) -> None:
        fd, path = tempfile.mkstemp(prefix="minaqueue-tts-", suffix=".mp3")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio)
            await run_process(
                self.player,
                "-nodisp",
                "-autoexit",
                "-loglevel",
                "error",
                "-volume",
                str(round(max(0.0, min(1.0, volume)) * 100)),
                path,
            )
        finally:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass


class LocalVoiceSpeaker:
    """Speaks through a local espeak-compatible synthesizer."""

    def __init__(self, command: str = "espeak-ng") -> None:
        self.command = command

    def speak(self, text: str, voice: str, volume: float) -> PresentationTask:
        if not text:
            return CoroutinePresentationTask(_noop, name="speak-empty")
        # espeak amplitude is 0-200, 100 is the default level
        amplitude = str(round(max(0.0, min(1.0, volume)) * 100))
        argv = [self.command, "-a", amplitude]
        if voice:
            argv += ["-v", voice]
        argv.append(text)

        async def _play(_token: CancellationToken) -> None:
            await run_process(*argv)

        return CoroutinePresentationTask(_play, name=f"speak-local-{voice or 'default'}")


class SilentSpeaker:
    """No audio; waits roughly as long as the text would take to read aloud."""

    def __init__(self, words_per_minute: int = 175) -> None:
        self.words_per_minute = words_per_minute

    def estimate_seconds(self, text: str) -> float:
        words = len(text.split())
        return words * 60.0 / self.words_per_minute if self.words_per_minute > 0 else 0.0

    def speak(self, text: str, voice: str, volume: float) -> PresentationTask:
        seconds = self.estimate_seconds(text)

        async def _wait(_token: CancellationToken) -> None:
            await asyncio.sleep(seconds)

        return CoroutinePresentationTask(_wait, name="speak-silent")


class VoiceRouter:
    """Dispatches to the cloud speaker for StreamElements voices, local otherwise."""

    def __init__(self, cloud: Speaker, local: Speaker) -> None:
        self.cloud = cloud
        self.local = local

    def speak(self, text: str, voice: str, volume: float) -> PresentationTask:
        speaker = self.cloud if is_cloud_voice(voice) else self.local
        return speaker.speak(text, voice, volume)
