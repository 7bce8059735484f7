# tests/test_config.py

from __future__ import annotations

import os
from pathlib import Path

import pytest

from deadline_relay.config import Settings


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in list(os.environ):
        if name.startswith("RELAY_") or name in ("TELEGRAM_BOT_TOKEN", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_match_reference_cadence(clean_env) -> None:
    s = Settings.from_env()

    assert s.channel == "console"
    assert s.scan_interval_seconds == 60.0
    assert s.scan_window_seconds == 120.0
    assert s.ledger_backend == "sqlite"
    assert s.calendar_mode == "inline"
    assert s.default_deadline_time == "09:00:00"
    assert s.tasks_db_path == Path(".local/relay") / "tasks.sqlite3"


def test_env_overrides_and_bad_values(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("RELAY_CHANNEL", "Telegram")
    clean_env.setenv("RELAY_SCAN_WINDOW_SECONDS", "300")
    clean_env.setenv("RELAY_SCAN_INTERVAL_SECONDS", "not-a-number")
    clean_env.setenv("RELAY_CALENDAR_MODE", "sideways")
    clean_env.setenv("RELAY_CALENDAR_MAX_ATTEMPTS", "0")
    clean_env.setenv("RELAY_DATA_DIR", str(tmp_path))
    clean_env.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    clean_env.setenv("RELAY_TELEGRAM_BOT_USERNAME", "@relay_bot")

    s = Settings.from_env()

    assert s.channel == "telegram"
    assert s.scan_window_seconds == 300.0
    assert s.scan_interval_seconds == 60.0
    assert s.calendar_mode == "inline"
    assert s.calendar_max_attempts == 1
    assert s.ledger_db_path == tmp_path / "ledger.sqlite3"
    assert s.telegram_bot_token == "123:abc"
    assert s.telegram_bot_username == "relay_bot"
