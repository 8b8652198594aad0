"""Proxy for the upstream speech synthesis endpoint, with a TTL cache."""

from __future__ import annotations

import logging

import aiohttp

from shared.cache import AsyncTTLCache, cached

logger = logging.getLogger("Relay.TTS")


class TTSUpstreamError(RuntimeError):
    """The upstream TTS provider failed or returned no audio."""


def _cache_key(voice: str, text: str) -> str:
    return f"{voice}\x1f{text}"


class TTSProxy:
    """Fetches MP3 audio for ``(voice, text)`` from the upstream provider.

    Results are cached per ``(voice, text)``; an upstream failure serves the
    last good audio for that pair if it is still in the stale store.
    """

    def __init__(
        self,
        upstream_url: str,
        *,
        timeout: float = 10.0,
        cache_size: int = 32,
        cache_ttl: float = 300.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.upstream_url = upstream_url
        self.timeout = timeout
        self.cache = AsyncTTLCache(maxsize=cache_size, ttl=cache_ttl)
        self._session = session
        self._own_session = session is None
        self.fetch = cached(self.cache, _cache_key)(self._fetch_upstream)

    async def close(self) -> None:
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _fetch_upstream(self, voice: str, text: str) -> bytes:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        logger.info(f"Synthesizing: {voice} - \"{text[:50]}{'...' if len(text) > 50 else ''}\"")
        try:
            async with self._session.get(
                self.upstream_url,
                params={"voice": voice, "text": text},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    raise TTSUpstreamError(f"Upstream returned HTTP {resp.status}")
                audio = await resp.read()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise TTSUpstreamError(f"{type(e).__name__}: {e}") from e
        if not audio:
            raise TTSUpstreamError("Upstream returned no audio")
        logger.info(f"Upstream returned {len(audio)} bytes")
        return audio
