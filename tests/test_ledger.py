from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import at
from uptime_watchdog.errors import ConflictError, NotFoundError
from uptime_watchdog.monitor import DowntimeLedger, format_duration


def test_format_duration() -> None:
    assert format_duration(0) == "0m 0s"
    assert format_duration(59.9) == "0m 59s"
    assert format_duration(187) == "3m 7s"
    assert format_duration(3600) == "60m 0s"


def test_down_then_up_closes_record_with_duration(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    record_id = ledger.on_down("db", at(0), "ORA-12541")

    record = ledger.open_record("db")
    assert record is not None and record.id == record_id
    assert record.cause == "ORA-12541"

    duration = ledger.on_up("db", at(125))
    assert duration == "2m 5s"

    closed = ledger.get(record_id)
    assert closed is not None
    assert closed.end_time == at(125)
    assert closed.duration_seconds == 125
    assert ledger.open_record("db") is None
    assert len(ledger.history("db")) == 1


def test_second_open_record_is_rejected(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    first = ledger.on_down("db", at(0))

    with pytest.raises(ConflictError) as exc:
        ledger.on_down("db", at(10))
    assert exc.value.record_id == first
    assert len(ledger.history()) == 1

    # other targets are unaffected
    ledger.on_down("web", at(10))
    assert len(ledger.history()) == 2


def test_up_without_open_record_raises_not_found(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    with pytest.raises(NotFoundError):
        ledger.on_up("db", at(0))


def test_history_survives_restart(tmp_path: Path) -> None:
    path = tmp_path / "downtime.json"
    ledger = DowntimeLedger(path)
    ledger.on_down("db", at(0), "down")
    ledger.on_up("db", at(30))
    open_id = ledger.on_down("db", at(100))
    ledger.mark_alert_sent(open_id)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert len(raw["records"]) == 2
    assert not (tmp_path / "downtime.json.tmp").exists()

    reloaded = DowntimeLedger(path)
    history = reloaded.history("db")
    assert [r.start_time for r in history] == [at(100), at(0)]
    assert history[1].duration == "0m 30s"
    reopened = reloaded.open_record("db")
    assert reopened is not None and reopened.id == open_id
    assert reopened.alert_sent is True


def test_mark_alert_sent_is_once_only(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    record_id = ledger.on_down("db", at(0))
    assert ledger.mark_alert_sent(record_id) is True
    assert ledger.mark_alert_sent(record_id) is False
    with pytest.raises(NotFoundError):
        ledger.mark_alert_sent("missing")


def test_statistics_and_open_duration(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    ledger.on_down("db", at(0))
    assert ledger.open_duration("db", now=at(61)) == "1m 1s"
    assert ledger.open_duration("web") is None

    stats = ledger.get_statistics(days_back=100000)
    assert stats["total_outages"] == 1
    assert stats["open_outages"] == 1
    assert stats["targets"]["db"]["open"] == 1


def test_failed_write_rolls_back_memory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    record_id = ledger.on_down("db", at(0))

    def disk_full(payload) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(ledger.store, "save", disk_full)

    with pytest.raises(OSError):
        ledger.on_up("db", at(60))
    record = ledger.open_record("db")
    assert record is not None and record.id == record_id
    assert record.duration is None

    with pytest.raises(OSError):
        ledger.on_down("web", at(0))
    assert ledger.open_record("web") is None

    # the in-memory flag is kept even when the write fails
    assert ledger.mark_alert_sent(record_id) is True
    assert ledger.mark_alert_sent(record_id) is False


def test_history_limit_zero_is_empty(tmp_path: Path) -> None:
    ledger = DowntimeLedger(tmp_path / "downtime.json")
    ledger.on_down("db", at(0))
    ledger.on_up("db", at(30))

    assert ledger.history(limit=0) == []
    assert len(ledger.history(limit=None)) == 1
