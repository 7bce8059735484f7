# tests/conftest.py

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from deadline_relay.calendar.credentials import CalendarCredentials
from deadline_relay.cli.bootstrap import create_initial_state
from deadline_relay.core.state import AppState

from .fakes import FakeCalendar, FakeMessenger, FakeTimer, ManualClock

T0 = datetime(2025, 3, 10, 8, 0, tzinfo=UTC)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="deadline-relay-test",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        bindings_db_path=tmp_path / "bindings.sqlite3",
        ledger_db_path=tmp_path / "ledger.sqlite3",
        credentials_db_path=tmp_path / "credentials.sqlite3",
        timezone="UTC",
        default_deadline_time="09:00:00",
        scan_interval_seconds=60.0,
        scan_window_seconds=120.0,
        ledger_backend="sqlite",
        ledger_retention_hours=24.0,
        ledger_claim_timeout_seconds=300.0,
        calendar_mode="inline",
        calendar_timeout_seconds=1.0,
        calendar_max_attempts=3,
        google_client_id="cid",
        google_client_secret="secret",
    )


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture()
def timer(clock: ManualClock) -> FakeTimer:
    return FakeTimer(clock)


@pytest.fixture()
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture()
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    messenger: FakeMessenger,
    clock: ManualClock,
    timer: FakeTimer,
    calendar: FakeCalendar,
) -> AppState:
    """
    AppState wired through the real composition root with deterministic fakes
    at the edges (messenger, clock, timer, calendar service).

    The SQLite stores are real: their behaviour is part of what we test.
    """
    return create_initial_state(
        settings=settings,
        messenger=messenger,
        clock=clock,
        timer=timer,
        calendar=calendar,
    )


@pytest.fixture()
def connect_calendar(state: AppState):
    def _connect(owner_id: str) -> CalendarCredentials:
        creds = CalendarCredentials(owner_id=owner_id, access_token=f"token-{owner_id}")
        state.credentials.save(creds)
        return creds

    return _connect
