# tests/test_tts_proxy.py
import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from relay.tts_proxy import TTSProxy, TTSUpstreamError


class FakeUpstream:
    def __init__(self):
        self.requests: list[dict] = []
        self.status = 200
        self.body = b"ID3-audio"
        self.app = web.Application()
        self.app.router.add_get("/speech", self.handle)

    async def handle(self, request):
        self.requests.append(dict(request.query))
        return web.Response(status=self.status, body=self.body, content_type="audio/mpeg")


@pytest_asyncio.fixture
async def upstream():
    upstream = FakeUpstream()
    server = TestServer(upstream.app)
    await server.start_server()
    upstream.url = str(server.make_url("/speech"))
    yield upstream
    await server.close()


@pytest_asyncio.fixture
async def proxy(upstream):
    proxy = TTSProxy(upstream.url, timeout=2, cache_size=4, cache_ttl=0.1)
    yield proxy
    await proxy.close()


@pytest.mark.asyncio
async def test_fetch_passes_voice_and_text(upstream, proxy):
    audio = await proxy.fetch("Amy", "hello there")

    assert audio == b"ID3-audio"
    assert upstream.requests == [{"voice": "Amy", "text": "hello there"}]


@pytest.mark.asyncio
async def test_repeated_fetch_is_cached(upstream, proxy):
    await proxy.fetch("Brian", "hi")
    await proxy.fetch("Brian", "hi")
    await proxy.fetch("Amy", "hi")

    assert len(upstream.requests) == 2
    assert proxy.cache.hits == 1


@pytest.mark.asyncio
async def test_upstream_error_status_raises(upstream, proxy):
    upstream.status = 500

    with pytest.raises(TTSUpstreamError):
        await proxy.fetch("Brian", "hi")


@pytest.mark.asyncio
async def test_empty_audio_raises(upstream, proxy):
    upstream.body = b""

    with pytest.raises(TTSUpstreamError):
        await proxy.fetch("Brian", "hi")


@pytest.mark.asyncio
async def test_expired_entry_served_stale_when_upstream_fails(upstream, proxy):
    assert await proxy.fetch("Brian", "hi") == b"ID3-audio"
    await asyncio.sleep(0.15)
    upstream.status = 503

    assert await proxy.fetch("Brian", "hi") == b"ID3-audio"
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_unreachable_upstream_raises():
    proxy = TTSProxy("http://127.0.0.1:9/speech", timeout=0.5)
    try:
        with pytest.raises(TTSUpstreamError):
            await proxy.fetch("Brian", "hi")
    finally:
        await proxy.close()
