# src/deadline_relay/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (channels and calendar are optional).
- Tests build their own settings object instead of reading the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "RELAY"

CHANNELS = ("telegram", "matrix", "console")
LEDGER_BACKENDS = ("memory", "sqlite")
CALENDAR_MODES = ("inline", "queued")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_choice(name: str, choices: tuple[str, ...], default: str) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    return raw if raw in choices else default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Messaging channel ----
    channel: str

    telegram_bot_token: Optional[str]
    telegram_api_base: str
    telegram_bot_username: str

    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str

    # ---- Time ----
    timezone: str
    default_deadline_time: str

    # ---- Scanner ----
    scan_interval_seconds: float
    scan_window_seconds: float

    # ---- Ledger ----
    ledger_backend: str
    ledger_retention_hours: float
    ledger_claim_timeout_seconds: float

    # ---- Calendar ----
    calendar_mode: str
    calendar_timeout_seconds: float
    calendar_max_attempts: int
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_calendar_api_base: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    bindings_db_path: Path
    ledger_db_path: Path
    credentials_db_path: Path
    matrix_store_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "deadline-relay")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        channel = _env_choice(_k("CHANNEL"), CHANNELS, "console")

        telegram_bot_token = _first_env(_k("TELEGRAM_BOT_TOKEN"), "TELEGRAM_BOT_TOKEN", default=None)
        telegram_api_base = _env(_k("TELEGRAM_API_BASE"), "https://api.telegram.org").rstrip("/")
        telegram_bot_username = _env(_k("TELEGRAM_BOT_USERNAME"), "").strip().lstrip("@")

        matrix_homeserver = (_first_env(_k("MATRIX_HOMESERVER"), "MATRIX_HOMESERVER", default="") or "").strip()
        matrix_user_id = (_first_env(_k("MATRIX_USER_ID"), "MATRIX_USER_ID", default="") or "").strip()
        matrix_password = (_first_env(_k("MATRIX_PASSWORD"), "MATRIX_PASSWORD", default="") or "").strip()

        timezone = _env(_k("TIMEZONE"), "UTC").strip() or "UTC"
        default_deadline_time = _env(_k("DEFAULT_DEADLINE_TIME"), "09:00:00").strip() or "09:00:00"

        # Reference cadence: tick every minute, look two minutes ahead.
        scan_interval_seconds = _env_float(_k("SCAN_INTERVAL_SECONDS"), 60.0)
        scan_window_seconds = _env_float(_k("SCAN_WINDOW_SECONDS"), 120.0)

        ledger_backend = _env_choice(_k("LEDGER_BACKEND"), LEDGER_BACKENDS, "sqlite")
        ledger_retention_hours = _env_float(_k("LEDGER_RETENTION_HOURS"), 24.0)
        ledger_claim_timeout_seconds = _env_float(_k("LEDGER_CLAIM_TIMEOUT_SECONDS"), 300.0)

        calendar_mode = _env_choice(_k("CALENDAR_MODE"), CALENDAR_MODES, "inline")
        calendar_timeout_seconds = _env_float(_k("CALENDAR_TIMEOUT_SECONDS"), 10.0)
        calendar_max_attempts = _env_int(_k("CALENDAR_MAX_ATTEMPTS"), 3)
        google_client_id = _first_env(_k("GOOGLE_CLIENT_ID"), "GOOGLE_CLIENT_ID", default=None)
        google_client_secret = _first_env(_k("GOOGLE_CLIENT_SECRET"), "GOOGLE_CLIENT_SECRET", default=None)
        google_calendar_api_base = _env(
            _k("GOOGLE_CALENDAR_API_BASE"), "https://www.googleapis.com/calendar/v3"
        ).rstrip("/")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/relay"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        bindings_db_path = _env_path(_k("BINDINGS_DB_PATH"), data_dir / "bindings.sqlite3")
        ledger_db_path = _env_path(_k("LEDGER_DB_PATH"), data_dir / "ledger.sqlite3")
        credentials_db_path = _env_path(_k("CREDENTIALS_DB_PATH"), data_dir / "credentials.sqlite3")
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            channel=channel,
            telegram_bot_token=telegram_bot_token,
            telegram_api_base=telegram_api_base,
            telegram_bot_username=telegram_bot_username,
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            timezone=timezone,
            default_deadline_time=default_deadline_time,
            scan_interval_seconds=scan_interval_seconds,
            scan_window_seconds=scan_window_seconds,
            ledger_backend=ledger_backend,
            ledger_retention_hours=ledger_retention_hours,
            ledger_claim_timeout_seconds=ledger_claim_timeout_seconds,
            calendar_mode=calendar_mode,
            calendar_timeout_seconds=calendar_timeout_seconds,
            calendar_max_attempts=max(1, calendar_max_attempts),
            google_client_id=google_client_id,
            google_client_secret=google_client_secret,
            google_calendar_api_base=google_calendar_api_base,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            bindings_db_path=bindings_db_path,
            ledger_db_path=ledger_db_path,
            credentials_db_path=credentials_db_path,
            matrix_store_path=matrix_store_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
