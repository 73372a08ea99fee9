from __future__ import annotations

from iotview.message_log import MessageLog


def test_newest_first_and_bounded() -> None:
    log = MessageLog(maxlen=3)
    for i in range(5):
        log.record("t", f"[{i}]", received_at=float(i))
    assert len(log) == 3
    assert [entry.payload for entry in log.recent()] == ["[4]", "[3]", "[2]"]


def test_recent_limit_and_clear() -> None:
    log = MessageLog()
    log.record("a", "1")
    log.record("b", "2")
    assert [entry.topic for entry in log.recent(1)] == ["b"]
    assert log.recent(0) == []
    log.clear()
    assert log.recent() == []


def test_to_dict() -> None:
    entry = MessageLog().record("devices/x", "{}", received_at=12.5)
    assert entry.to_dict() == {
        "seq": 1,
        "topic": "devices/x",
        "payload": "{}",
        "received_at": 12.5,
    }


def test_seq_grows_across_clear_and_epoch_marks_it() -> None:
    log = MessageLog()
    first = log.record("t", "1")
    log.clear()
    second = log.record("t", "2")
    assert (first.seq, second.seq) == (1, 2)
    assert log.last_seq == 2
    assert log.epoch == 1


def test_since_returns_only_newer_entries() -> None:
    log = MessageLog(maxlen=10)
    for i in range(6):
        log.record("t", str(i), received_at=float(i))
    assert [entry.payload for entry in log.since(3)] == ["5", "4", "3"]
    assert [entry.payload for entry in log.since(3, limit=2)] == ["5", "4"]
    assert log.since(6) == []
    assert log.since(0, limit=0) == []
