# tests/test_ledger.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from deadline_relay.reminders.ledger import MemoryLedger, SqliteLedger, deadline_key

from .fakes import ManualClock

T0 = datetime(2025, 3, 10, 8, 0, tzinfo=UTC)
DUE = T0 + timedelta(minutes=1)


@pytest.fixture(params=["memory", "sqlite"])
def ledger_and_clock(request, tmp_path: Path):
    clock = ManualClock(T0)
    if request.param == "memory":
        return MemoryLedger(clock=clock), clock
    return SqliteLedger(tmp_path / "ledger.sqlite3", clock=clock), clock


def test_claim_is_exclusive_until_released(ledger_and_clock) -> None:
    ledger, _ = ledger_and_clock

    assert ledger.try_claim("t1", DUE) is True
    assert ledger.try_claim("t1", DUE) is False
    assert ledger.has_notified("t1", DUE) is False

    ledger.release("t1", DUE)
    assert ledger.try_claim("t1", DUE) is True


def test_notified_entry_blocks_claims_and_release(ledger_and_clock) -> None:
    ledger, _ = ledger_and_clock

    assert ledger.try_claim("t1", DUE)
    ledger.mark_notified("t1", DUE)
    assert ledger.has_notified("t1", DUE) is True

    # release only drops unfinished claims
    ledger.release("t1", DUE)
    assert ledger.has_notified("t1", DUE) is True
    assert ledger.try_claim("t1", DUE) is False


def test_changed_deadline_is_a_new_key(ledger_and_clock) -> None:
    ledger, _ = ledger_and_clock
    ledger.mark_notified("t1", DUE)

    moved = DUE + timedelta(days=1)
    assert ledger.has_notified("t1", moved) is False
    assert ledger.try_claim("t1", moved) is True


def test_same_instant_in_another_zone_is_the_same_key(ledger_and_clock) -> None:
    ledger, _ = ledger_and_clock
    ledger.mark_notified("t1", DUE)

    shifted = DUE.astimezone(timezone(timedelta(hours=5)))
    assert ledger.has_notified("t1", shifted) is True


def test_abandoned_claim_expires(ledger_and_clock) -> None:
    ledger, clock = ledger_and_clock

    assert ledger.try_claim("t1", DUE)
    clock.advance(60)
    assert ledger.try_claim("t1", DUE) is False

    clock.advance(300)
    assert ledger.try_claim("t1", DUE) is True


def test_purge_drops_entries_past_retention(ledger_and_clock) -> None:
    ledger, clock = ledger_and_clock
    ledger.mark_notified("old", DUE)
    ledger.mark_notified("new", DUE + timedelta(hours=30))
    assert ledger.count() == 2

    clock.advance(timedelta(hours=25).total_seconds())
    assert ledger.purge_expired() == 1
    assert ledger.has_notified("old", DUE) is False
    assert ledger.has_notified("new", DUE + timedelta(hours=30)) is True


def test_forget_task_drops_every_deadline(ledger_and_clock) -> None:
    ledger, _ = ledger_and_clock
    ledger.mark_notified("t1", DUE)
    ledger.mark_notified("t1", DUE + timedelta(days=1))
    ledger.mark_notified("t2", DUE)

    assert ledger.forget_task("t1") == 2
    assert ledger.count() == 1


def test_sqlite_ledger_survives_restart(tmp_path: Path) -> None:
    db = tmp_path / "ledger.sqlite3"
    clock = ManualClock(T0)
    SqliteLedger(db, clock=clock).mark_notified("t1", DUE)

    reopened = SqliteLedger(db, clock=clock)
    assert reopened.has_notified("t1", DUE) is True
    assert reopened.try_claim("t1", DUE) is False


def test_memory_ledger_forgets_on_restart() -> None:
    clock = ManualClock(T0)
    MemoryLedger(clock=clock).mark_notified("t1", DUE)

    assert MemoryLedger(clock=clock).has_notified("t1", DUE) is False


def test_deadline_key_requires_aware_datetime() -> None:
    with pytest.raises(ValueError):
        deadline_key(datetime(2025, 3, 10, 9, 0))
    assert deadline_key(DUE) == int(DUE.timestamp() * 1000)
