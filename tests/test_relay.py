# tests/test_relay.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer
from conftest import make_record

from relay.config import RelaySettings
from relay.server import RelayServer
from relay.tts_proxy import TTSUpstreamError
from shared.cache import AsyncTTLCache
from shared.protocol import (
    Completed,
    FullState,
    GateChanged,
    Identify,
    QueueSnapshot,
    Role,
    Skip,
    decode,
    encode,
)


@pytest.fixture
def tts_proxy():
    proxy = MagicMock()
    proxy.fetch = AsyncMock(return_value=b"ID3-fake-mp3")
    proxy.close = AsyncMock()
    proxy.cache = AsyncTTLCache(maxsize=4, ttl=60)
    return proxy


@pytest_asyncio.fixture
async def relay(tts_proxy):
    server = RelayServer(RelaySettings(identify_timeout=0.2, ws_heartbeat=5), tts_proxy=tts_proxy)
    client = TestClient(TestServer(server.app))
    await client.start_server()
    yield server, client
    await client.close()


async def identify(client, role: Role):
    ws = await client.ws_connect("/ws")
    await ws.send_str(encode(Identify(role=role)))
    first = decode(await ws.receive_str(timeout=1))
    assert isinstance(first, FullState)
    return ws, first


# ---------------------------------------------------------------------------
# WebSocket relay
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_identify_receives_full_state(relay):
    server, client = relay

    ws, state = await identify(client, Role.DISPLAY)

    assert state.gate_open is True
    assert state.queue == []
    await ws.close()


@pytest.mark.asyncio
async def test_frames_are_forwarded_to_other_clients_only(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)
    display, _ = await identify(client, Role.DISPLAY)

    await control.send_str(encode(Skip()))

    assert isinstance(decode(await display.receive_str(timeout=1)), Skip)
    with pytest.raises(asyncio.TimeoutError):
        await control.receive_str(timeout=0.1)

    await display.send_str(encode(Completed(alert_id="x")))
    assert decode(await control.receive_str(timeout=1)) == Completed(alert_id="x")

    await control.close()
    await display.close()


@pytest.mark.asyncio
async def test_late_client_gets_latest_state(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)
    record = make_record("x")

    await control.send_str(encode(QueueSnapshot(queue=[record])))
    await control.send_str(encode(GateChanged(is_open=False)))
    await asyncio.sleep(0.05)

    display, state = await identify(client, Role.DISPLAY)

    assert state.gate_open is False
    assert [r.id for r in state.queue] == ["x"]
    assert server.state.gate_open is False

    await control.close()
    await display.close()


@pytest.mark.asyncio
async def test_full_state_from_control_replaces_cached_state(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)

    await control.send_str(encode(FullState(gate_open=False, queue=[make_record("y")])))
    await asyncio.sleep(0.05)

    assert server.state.gate_open is False
    assert [r.id for r in server.state.queue] == ["y"]
    await control.close()


@pytest.mark.asyncio
async def test_state_frames_from_display_do_not_touch_cache(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)
    display, _ = await identify(client, Role.DISPLAY)

    await display.send_str(encode(QueueSnapshot(queue=[make_record("z")])))
    await display.send_str(encode(GateChanged(is_open=False)))
    await display.send_str(encode(FullState(gate_open=False, queue=[make_record("z")])))
    assert decode(await control.receive_str(timeout=1)).type == "queue_snapshot"
    await asyncio.sleep(0.05)

    assert server.state.gate_open is True
    assert server.state.queue == []
    await control.close()
    await display.close()


@pytest.mark.asyncio
async def test_unidentified_client_is_closed_after_timeout(relay):
    server, client = relay
    ws = await client.ws_connect("/ws")

    message = await ws.receive(timeout=1)

    assert message.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
    await ws.close()


@pytest.mark.asyncio
async def test_first_frame_must_be_identify(relay):
    server, client = relay
    ws = await client.ws_connect("/ws")

    await ws.send_str(encode(Skip()))
    message = await ws.receive(timeout=1)

    assert message.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
    await ws.close()


@pytest.mark.asyncio
async def test_unidentified_clients_get_no_broadcasts(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)
    lurker = await client.ws_connect("/ws")
    await asyncio.sleep(0.02)

    sent = await server.broadcast(encode(Skip()), exclude=server.clients[0])

    assert sent == 0
    await control.close()
    await lurker.close()


@pytest.mark.asyncio
async def test_malformed_frame_is_dropped_without_disconnect(relay):
    server, client = relay
    control, _ = await identify(client, Role.CONTROL)
    display, _ = await identify(client, Role.DISPLAY)

    await control.send_str("{not json")
    await control.send_str(encode(Skip()))

    assert isinstance(decode(await display.receive_str(timeout=1)), Skip)
    assert not control.closed
    await control.close()
    await display.close()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_and_status(relay):
    server, client = relay
    ws, _ = await identify(client, Role.DISPLAY)

    health = await client.get("/health")
    assert health.status == 200
    assert (await health.json())["status"] == "ok"

    status = await (await client.get("/status")).json()
    assert status["clients"]["display"] == 1
    assert status["clients"]["control"] == 0
    await ws.close()


@pytest.mark.asyncio
async def test_tts_requires_text(relay, tts_proxy):
    server, client = relay

    response = await client.get("/tts", params={"voice": "Brian"})

    assert response.status == 400
    tts_proxy.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_tts_returns_audio_with_cors(relay, tts_proxy):
    server, client = relay

    response = await client.get("/tts", params={"voice": "Amy", "text": "hello"})

    assert response.status == 200
    assert response.content_type == "audio/mpeg"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert await response.read() == b"ID3-fake-mp3"
    tts_proxy.fetch.assert_awaited_once_with("Amy", "hello")


@pytest.mark.asyncio
async def test_tts_uses_default_voice(relay, tts_proxy):
    server, client = relay

    await client.get("/tts", params={"text": "hello"})

    tts_proxy.fetch.assert_awaited_once_with("Brian", "hello")


@pytest.mark.asyncio
async def test_tts_upstream_failure_is_bad_gateway(relay, tts_proxy):
    server, client = relay
    tts_proxy.fetch.side_effect = TTSUpstreamError("Upstream returned HTTP 500")

    response = await client.get("/tts", params={"text": "hello"})

    assert response.status == 502


@pytest.mark.asyncio
async def test_tts_preflight(relay):
    server, client = relay

    response = await client.options("/tts")

    assert response.status == 204
    assert response.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"
