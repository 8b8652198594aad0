# tests/test_queue_store.py
from conftest import make_record

from shared.dedup import is_duplicate
from shared.models.alert import AlertCandidate, AlertCategory, AlertStatus, can_transition
from shared.queue_store import QueueStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def candidate(username="alice", amount=500, message="hello", category=AlertCategory.BITS):
    return AlertCandidate(source_username=username, amount=amount, message=message, category=category)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def test_forward_transitions_only():
    assert can_transition(AlertStatus.PENDING, AlertStatus.PLAYING)
    assert can_transition(AlertStatus.PENDING, AlertStatus.PLAYED)
    assert can_transition(AlertStatus.PLAYING, AlertStatus.PLAYED)
    assert not can_transition(AlertStatus.PLAYED, AlertStatus.PENDING)
    assert not can_transition(AlertStatus.PLAYED, AlertStatus.PLAYING)
    assert not can_transition(AlertStatus.PLAYING, AlertStatus.PENDING)
    assert not can_transition(AlertStatus.PENDING, AlertStatus.PENDING)


def test_set_status_rejects_backward_move():
    store = QueueStore([make_record("x", status=AlertStatus.PLAYED)])

    assert store.set_status("x", AlertStatus.PENDING) is False
    assert store.get("x").status is AlertStatus.PLAYED


def test_set_status_unknown_id_is_noop():
    store = QueueStore([make_record("x")])

    assert store.set_status("missing", AlertStatus.PLAYED) is False
    assert [r.status for r in store.records] == [AlertStatus.PENDING]


def test_set_status_twice_is_idempotent():
    store = QueueStore([make_record("x", status=AlertStatus.PLAYING)])

    assert store.set_status("x", AlertStatus.PLAYED) is True
    assert store.set_status("x", AlertStatus.PLAYED) is False
    assert store.get("x").status is AlertStatus.PLAYED


# ---------------------------------------------------------------------------
# Append / dedup
# ---------------------------------------------------------------------------


def test_append_assigns_id_timestamp_and_pending_status():
    clock = FakeClock(42.0)
    store = QueueStore(clock=clock, id_factory=lambda: "fixed-id")

    record = store.append(candidate())

    assert record is not None
    assert record.id == "fixed-id"
    assert record.created_at == 42.0
    assert record.status is AlertStatus.PENDING
    assert store.records == [record]


def test_append_preserves_arrival_order():
    store = QueueStore()
    ids = [store.append(candidate(username=name)).id for name in ("a", "b", "c")]

    assert [r.id for r in store.records] == ids
    assert [r.id for r in store.pending()] == ids


def test_duplicate_inside_window_is_suppressed():
    clock = FakeClock()
    store = QueueStore(dedup_window_ms=5000, clock=clock)
    assert store.append(candidate()) is not None

    clock.now += 4.9
    assert store.append(candidate()) is None
    assert len(store) == 1


def test_duplicate_outside_window_is_admitted():
    clock = FakeClock()
    store = QueueStore(dedup_window_ms=5000, clock=clock)
    store.append(candidate())

    clock.now += 5.0
    assert store.append(candidate()) is not None
    assert len(store) == 2


def test_duplicate_of_played_record_is_still_suppressed():
    clock = FakeClock()
    store = QueueStore(dedup_window_ms=5000, clock=clock)
    first = store.append(candidate())
    store.set_status(first.id, AlertStatus.PLAYED)

    clock.now += 1.0
    assert store.append(candidate()) is None


def test_different_message_is_not_a_duplicate():
    store = QueueStore(clock=FakeClock())
    store.append(candidate(message="one"))

    assert store.append(candidate(message="two")) is not None


def test_zero_window_disables_dedup():
    records = [make_record(username="alice", amount=500, message="hello", created_at=10.0)]

    assert is_duplicate(records, candidate(), 10.0, window_ms=0) is False
    assert is_duplicate(records, candidate(), 10.0, window_ms=1000) is True


def test_pending_cap_drops_new_alerts():
    store = QueueStore(max_pending=2, clock=FakeClock())
    store.append(candidate(username="a"))
    second = store.append(candidate(username="b"))

    assert store.append(candidate(username="c")) is None

    store.set_status(second.id, AlertStatus.PLAYED)
    assert store.append(candidate(username="c")) is not None


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


def test_clear_pending_keeps_playing_and_played():
    store = QueueStore(
        [
            make_record("a", status=AlertStatus.PLAYED),
            make_record("b", status=AlertStatus.PLAYING),
            make_record("c"),
            make_record("d"),
        ]
    )

    assert store.clear_pending() == 2
    assert [r.id for r in store.records] == ["a", "b"]


def test_clear_played():
    store = QueueStore([make_record("a", status=AlertStatus.PLAYED), make_record("b")])

    assert store.clear_played() == 1
    assert [r.id for r in store.records] == ["b"]


def test_remove():
    store = QueueStore([make_record("a"), make_record("b")])

    assert store.remove("a") is True
    assert store.remove("a") is False
    assert [r.id for r in store.records] == ["b"]


def test_records_returns_a_copy():
    store = QueueStore([make_record("a")])

    store.records.clear()

    assert len(store) == 1
