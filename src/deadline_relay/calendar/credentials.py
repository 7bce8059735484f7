# src/deadline_relay/calendar/credentials.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CalendarCredentials:
    """OAuth tokens an owner granted for their calendar."""

    owner_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    calendar_id: str = "primary"

    def is_expired(self, now_ts: float | None = None, *, skew_seconds: float = 60.0) -> bool:
        if self.expires_at is None:
            return False
        now_ts = time.time() if now_ts is None else now_ts
        return now_ts >= self.expires_at - skew_seconds


class CredentialStore:
    """SQLite store of per-owner calendar credentials."""

    def __init__(self, db_path: str | Path = "credentials.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("CredentialStore ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS calendar_credentials (
                    owner_id TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at REAL,
                    calendar_id TEXT NOT NULL DEFAULT 'primary',
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, owner_id: str) -> CalendarCredentials | None:
        if not owner_id:
            return None
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM calendar_credentials WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None or not row["access_token"]:
            return None
        return CalendarCredentials(
            owner_id=str(row["owner_id"]),
            access_token=str(row["access_token"]),
            refresh_token=row["refresh_token"] or None,
            expires_at=float(row["expires_at"]) if row["expires_at"] is not None else None,
            calendar_id=str(row["calendar_id"] or "primary"),
        )

    def save(self, credentials: CalendarCredentials) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO calendar_credentials(
                    owner_id, access_token, refresh_token, expires_at, calendar_id, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, calendar_credentials.refresh_token),
                    expires_at = excluded.expires_at,
                    calendar_id = excluded.calendar_id,
                    updated_at = excluded.updated_at
                """,
                (
                    credentials.owner_id,
                    credentials.access_token,
                    credentials.refresh_token,
                    credentials.expires_at,
                    credentials.calendar_id or "primary",
                    time.time(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, owner_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM calendar_credentials WHERE owner_id = ?", (owner_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
