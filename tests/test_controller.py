# tests/test_controller.py
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from conftest import make_record
from pydantic import ValidationError

from control.core.controller import AlertController
from shared.models.alert import AlertStatus
from shared.protocol import (
    Clear,
    Completed,
    ForcePlay,
    FullState,
    GateChanged,
    QueueSnapshot,
    SettingsChanged,
    Skip,
    Started,
)
from shared.repositories.state import JsonStateRepository, PersistedState


def bits_event(username="alice", amount=500, message="hello"):
    return {"username": username, "amount": amount, "message": message, "category": "bits"}


@pytest.fixture
def channel():
    channel = MagicMock()
    channel.connected = True
    channel.send = AsyncMock(return_value=True)
    return channel


@pytest.fixture
def controller(channel):
    controller = AlertController()
    controller.attach_channel(channel)
    return controller


def sent_messages(channel):
    return [call.args[0] for call in channel.send.await_args_list]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def test_attach_channel_registers_callbacks(controller, channel):
    assert channel.on.call_args_list == [
        call("started", controller.handle_started),
        call("completed", controller.handle_completed),
    ]
    channel.on_connect.assert_called_once_with(controller.push_full_state)


@pytest.mark.asyncio
async def test_push_full_state_sends_everything(controller, channel):
    await controller.ingest(bits_event())
    await controller.set_gate(False)
    channel.send.reset_mock()

    await controller.push_full_state()

    (message,) = sent_messages(channel)
    assert isinstance(message, FullState)
    assert message.gate_open is False
    assert len(message.queue) == 1


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingest_appends_and_broadcasts_snapshot(controller, channel):
    record = await controller.ingest(bits_event())

    assert record is not None
    assert record.status is AlertStatus.PENDING
    (message,) = sent_messages(channel)
    assert isinstance(message, QueueSnapshot)
    assert [r.id for r in message.queue] == [record.id]


@pytest.mark.asyncio
async def test_ingest_suppresses_duplicates(controller, channel):
    assert await controller.ingest(bits_event()) is not None
    assert await controller.ingest(bits_event()) is None

    assert len(controller.store) == 1
    assert channel.send.await_count == 1


@pytest.mark.asyncio
async def test_ingest_drops_small_cheers_unless_manual(controller):
    assert await controller.ingest(bits_event(amount=50)) is None
    assert await controller.ingest(bits_event(amount=50), manual=True) is not None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gate_commands(controller, channel):
    assert await controller.set_gate(False) is False
    assert await controller.toggle_gate() is True

    messages = sent_messages(channel)
    assert messages == [GateChanged(is_open=False), GateChanged(is_open=True)]
    assert controller.gate.is_open


@pytest.mark.asyncio
async def test_skip_marks_playing_played_and_sends_skip_first(controller, channel):
    controller.store.replace_all([make_record("x", status=AlertStatus.PLAYING), make_record("y")])

    assert await controller.skip() == ["x"]

    assert controller.store.get("x").status is AlertStatus.PLAYED
    assert controller.store.get("y").status is AlertStatus.PENDING
    skip, snapshot = sent_messages(channel)
    assert isinstance(skip, Skip)
    assert isinstance(snapshot, QueueSnapshot)


@pytest.mark.asyncio
async def test_clear_removes_pending(controller, channel):
    controller.store.replace_all(
        [make_record("x", status=AlertStatus.PLAYING), make_record("y"), make_record("z")]
    )

    assert await controller.clear() == 2

    assert [r.id for r in controller.store.records] == ["x"]
    assert isinstance(sent_messages(channel)[0], Clear)


@pytest.mark.asyncio
async def test_force_play_only_for_pending(controller, channel):
    controller.store.replace_all(
        [
            make_record("x", status=AlertStatus.PLAYING),
            make_record("y"),
            make_record("done", status=AlertStatus.PLAYED),
        ]
    )

    assert await controller.force_play("missing") is False
    assert await controller.force_play("done") is False
    assert await controller.force_play("y") is True

    assert controller.store.get("x").status is AlertStatus.PLAYED
    assert controller.store.get("y").status is AlertStatus.PLAYING
    force, snapshot = sent_messages(channel)
    assert force == ForcePlay(alert_id="y")
    assert isinstance(snapshot, QueueSnapshot)


@pytest.mark.asyncio
async def test_remove_and_clear_played(controller):
    controller.store.replace_all([make_record("x", status=AlertStatus.PLAYED), make_record("y")])

    assert await controller.remove("y") is True
    assert await controller.remove("y") is False
    assert await controller.clear_played() == 1
    assert len(controller.store) == 0


@pytest.mark.asyncio
async def test_update_settings_merges_and_broadcasts(controller, channel):
    settings = await controller.update_settings({"alert_duration": 8000, "tts_voice": "Amy"})

    assert settings.alert_duration == 8000
    assert settings.tts_voice == "Amy"
    assert settings.font_size == 24
    (message,) = sent_messages(channel)
    assert isinstance(message, SettingsChanged)
    assert message.settings.alert_duration == 8000


@pytest.mark.asyncio
async def test_update_settings_rejects_invalid_values(controller, channel):
    with pytest.raises(ValidationError):
        await controller.update_settings({"tts_volume": 3})

    assert controller.settings.tts_volume == 1.0
    channel.send.assert_not_awaited()


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_started_marks_record_playing_without_broadcast(controller, channel):
    controller.store.replace_all([make_record("x"), make_record("y")])

    await controller.handle_started(Started(alert_id="x"))

    assert controller.store.get("x").status is AlertStatus.PLAYING
    assert controller.status()["playing"] == ["x"]
    channel.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_clear_after_started_keeps_playing_record(controller, channel):
    controller.store.replace_all([make_record("x"), make_record("y")])
    await controller.handle_started(Started(alert_id="x"))

    removed = await controller.clear()

    assert removed == 1
    assert [r.id for r in controller.store.records] == ["x"]
    snapshot = sent_messages(channel)[-1]
    assert isinstance(snapshot, QueueSnapshot)
    assert [r.id for r in snapshot.queue] == ["x"]


@pytest.mark.asyncio
async def test_skip_after_started_reports_the_playing_record(controller):
    controller.store.replace_all([make_record("x")])
    await controller.handle_started(Started(alert_id="x"))

    assert await controller.skip() == ["x"]
    assert controller.store.get("x").status is AlertStatus.PLAYED


@pytest.mark.asyncio
async def test_started_after_completion_does_not_reopen_record(controller):
    controller.store.replace_all([make_record("x")])

    await controller.handle_completed(Completed(alert_id="x"))
    await controller.handle_started(Started(alert_id="x"))

    assert controller.store.get("x").status is AlertStatus.PLAYED


@pytest.mark.asyncio
async def test_completion_is_idempotent(controller, channel):
    controller.store.replace_all([make_record("x", status=AlertStatus.PLAYING)])

    await controller.handle_completed(Completed(alert_id="x"))
    first = controller.store.records
    await controller.handle_completed(Completed(alert_id="x"))

    assert controller.store.records == first
    assert first[0].status is AlertStatus.PLAYED
    assert controller.completions_received == 2
    assert channel.send.await_count == 1


@pytest.mark.asyncio
async def test_completion_for_pending_record_marks_it_played(controller):
    controller.store.replace_all([make_record("x")])

    await controller.handle_completed(Completed(alert_id="x"))

    assert controller.store.get("x").status is AlertStatus.PLAYED


@pytest.mark.asyncio
async def test_completion_for_unknown_record_is_ignored(controller, channel):
    await controller.handle_completed(Completed(alert_id="ghost"))

    assert len(controller.store) == 0
    channel.send.assert_not_awaited()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_state_survives_restart(tmp_path):
    path = tmp_path / "state.json"
    first = AlertController(repository=JsonStateRepository(path))
    record = await first.ingest(bits_event())
    await first.set_gate(False)
    await first.update_settings({"alert_duration": 1234})

    second = AlertController(repository=JsonStateRepository(path))
    await second.load()

    assert [r.id for r in second.store.records] == [record.id]
    assert second.gate.is_open is False
    assert second.settings.alert_duration == 1234


@pytest.mark.asyncio
async def test_corrupt_state_file_starts_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    controller = AlertController(repository=JsonStateRepository(path))

    await controller.load()

    assert len(controller.store) == 0
    assert controller.gate.is_open


@pytest.mark.asyncio
async def test_persist_failure_does_not_block_mutation(channel):
    repository = MagicMock()
    repository.save = AsyncMock(side_effect=OSError("disk full"))
    controller = AlertController(repository=repository)
    controller.attach_channel(channel)

    record = await controller.ingest(bits_event())

    assert record is not None
    assert len(controller.store) == 1
    assert isinstance(sent_messages(channel)[0], QueueSnapshot)


@pytest.mark.asyncio
async def test_load_failure_starts_empty():
    repository = MagicMock()
    repository.load = AsyncMock(side_effect=ConnectionError("db down"))
    controller = AlertController(repository=repository)

    await controller.load()

    assert len(controller.store) == 0


def test_persisted_state_dict_round_trip():
    state = PersistedState(gate_open=False, records=[make_record("x", status=AlertStatus.PLAYED)])

    restored = PersistedState.from_dict(state.to_dict())

    assert restored.gate_open is False
    assert restored.records == state.records
    assert restored.to_dict()["version"] == 1
