# src/deadline_relay/reminders/ledger.py

"""
Notification dedup ledger.

A ledger entry is keyed by (task id, deadline). A changed deadline is a different
key, so an edited task becomes eligible for a fresh reminder, while an unchanged
deadline is reminded at most once.

Entries go through two states:
- claimed: a scanner tick reserved the key and is about to dispatch;
- notified: a dispatch attempt was made.

try_claim() is the atomic check-and-set that keeps overlapping ticks (or several
processes sharing one SQLite file) from dispatching the same reminder twice.
A claim that is never completed (process died mid-dispatch) becomes claimable
again after claim_timeout.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path

from ..core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)
DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=5)


class EntryState(StrEnum):
    CLAIMED = "claimed"
    NOTIFIED = "notified"


@dataclass(slots=True)
class LedgerEntry:
    task_id: str
    deadline_ms: int
    state: EntryState
    claimed_at: float
    notified_at: float | None = None


def deadline_key(deadline: datetime) -> int:
    """Epoch milliseconds; deadlines must be timezone-aware."""
    if deadline.tzinfo is None:
        raise ValueError("deadline must be timezone-aware")
    return int(round(deadline.timestamp() * 1000))


class MemoryLedger:
    """
    Process-local ledger.

    Everything is lost on restart: a reminder whose deadline is still inside the
    window after a restart will be sent again. Use SqliteLedger when that matters.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        retention: timedelta = DEFAULT_RETENTION,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> None:
        self._clock = clock or SystemClock()
        self._retention = retention
        self._claim_timeout = claim_timeout
        self._entries: dict[tuple[str, int], LedgerEntry] = {}
        self._lock = threading.Lock()

    def has_notified(self, task_id: str, deadline: datetime) -> bool:
        key = (str(task_id), deadline_key(deadline))
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.state == EntryState.NOTIFIED

    def try_claim(self, task_id: str, deadline: datetime) -> bool:
        key = (str(task_id), deadline_key(deadline))
        now_ts = self._clock.now().timestamp()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.state == EntryState.CLAIMED and (
                    now_ts - entry.claimed_at >= self._claim_timeout.total_seconds()
                ):
                    logger.warning("Reclaiming abandoned ledger claim task_id=%s", task_id)
                    entry.claimed_at = now_ts
                    return True
                return False
            self._entries[key] = LedgerEntry(
                task_id=key[0],
                deadline_ms=key[1],
                state=EntryState.CLAIMED,
                claimed_at=now_ts,
            )
            return True

    def mark_notified(self, task_id: str, deadline: datetime) -> None:
        key = (str(task_id), deadline_key(deadline))
        now_ts = self._clock.now().timestamp()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = LedgerEntry(
                    task_id=key[0],
                    deadline_ms=key[1],
                    state=EntryState.NOTIFIED,
                    claimed_at=now_ts,
                )
                self._entries[key] = entry
            entry.state = EntryState.NOTIFIED
            entry.notified_at = now_ts

    def release(self, task_id: str, deadline: datetime) -> None:
        key = (str(task_id), deadline_key(deadline))
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state == EntryState.CLAIMED:
                del self._entries[key]

    def forget_task(self, task_id: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k[0] == str(task_id)]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop entries whose deadline is older than the retention window."""
        now = now or self._clock.now()
        cutoff_ms = deadline_key(now - self._retention)
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.deadline_ms < cutoff_ms]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Ledger purged %d expired entries", len(stale))
        return len(stale)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


class SqliteLedger:
    """
    SQLite-backed ledger: survives restarts and can be shared by several scanner
    processes. Each method opens its own connection.
    """

    def __init__(
        self,
        db_path: str | Path = "ledger.sqlite3",
        *,
        clock: Clock | None = None,
        retention: timedelta = DEFAULT_RETENTION,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or SystemClock()
        self._retention = retention
        self._claim_timeout = claim_timeout
        self._ensure_schema()
        logger.info("SqliteLedger ready db=%s entries=%s", self._db_path, self.count())

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
                CREATE TABLE IF NOT EXISTS notified (
                    task_id TEXT NOT NULL,
                    deadline_ms INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    claimed_at REAL NOT NULL,
                    notified_at REAL,
                    PRIMARY KEY (task_id, deadline_ms)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_notified_deadline ON notified(deadline_ms)")
            conn.commit()
        finally:
            conn.close()

    def has_notified(self, task_id: str, deadline: datetime) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT 1 FROM notified WHERE task_id = ? AND deadline_ms = ? AND state = ?",
                (str(task_id), deadline_key(deadline), EntryState.NOTIFIED.value),
            )
            return cur.fetchone() is not None
        finally:
            conn.close()

    def try_claim(self, task_id: str, deadline: datetime) -> bool:
        now_ts = self._clock.now().timestamp()
        stale_before = now_ts - self._claim_timeout.total_seconds()
        conn = self._get_conn()
        try:
            # Insert a fresh claim, or take over a claim nobody finished in time.
            cur = conn.execute(
                """
                INSERT INTO notified(task_id, deadline_ms, state, claimed_at)
                VALUES (?, ?, 'claimed', ?)
                ON CONFLICT(task_id, deadline_ms) DO UPDATE
                    SET claimed_at = excluded.claimed_at
                    WHERE notified.state = 'claimed' AND notified.claimed_at <= ?
                """,
                (str(task_id), deadline_key(deadline), now_ts, stale_before),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def mark_notified(self, task_id: str, deadline: datetime) -> None:
        now_ts = self._clock.now().timestamp()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO notified(task_id, deadline_ms, state, claimed_at, notified_at)
                VALUES (?, ?, 'notified', ?, ?)
                ON CONFLICT(task_id, deadline_ms) DO UPDATE
                    SET state = 'notified', notified_at = excluded.notified_at
                """,
                (str(task_id), deadline_key(deadline), now_ts, now_ts),
            )
            conn.commit()
        finally:
            conn.close()

    def release(self, task_id: str, deadline: datetime) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM notified WHERE task_id = ? AND deadline_ms = ? AND state = 'claimed'",
                (str(task_id), deadline_key(deadline)),
            )
            conn.commit()
        finally:
            conn.close()

    def forget_task(self, task_id: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM notified WHERE task_id = ?", (str(task_id),))
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self._clock.now()
        cutoff_ms = deadline_key(now - self._retention)
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM notified WHERE deadline_ms < ?", (cutoff_ms,))
            conn.commit()
            n = int(cur.rowcount)
        finally:
            conn.close()
        if n:
            logger.debug("Ledger purged %d expired entries", n)
        return n

    def count(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM notified").fetchone()
            return int(n)
        finally:
            conn.close()
