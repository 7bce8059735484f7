# src/deadline_relay/identity/registry.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from ..core.locks import KeyedLocks

logger = logging.getLogger(__name__)

# Owner value for a channel that said /start before it was linked to an account.
UNLINKED_OWNER = "__unlinked__"


class BindOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class Binding:
    channel_id: str
    owner_id: str
    linked_at: float

    @property
    def is_linked(self) -> bool:
        return self.owner_id != UNLINKED_OWNER


def _clean_owner(owner_id: str | None) -> str | None:
    owner = (owner_id or "").strip()
    if not owner or owner == UNLINKED_OWNER:
        return None
    return owner


class IdentityRegistry:
    """
    Channel id -> owner id bindings (SQLite).

    Two writers share this registry: the inbound command listener (/start, /stop)
    and the authenticated linking call. Writes for one channel id are serialized;
    the owner id is last-write-wins, except that an unlinked placeholder never
    replaces a real owner.
    """

    def __init__(self, db_path: str | Path = "bindings.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._locks = KeyedLocks()
        self._ensure_schema()
        logger.info("IdentityRegistry ready db=%s bindings=%s", self._db_path, self.count())

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
                CREATE TABLE IF NOT EXISTS bindings (
                    channel_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    linked_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bindings_owner ON bindings(owner_id)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_binding(row: sqlite3.Row) -> Binding:
        return Binding(
            channel_id=str(row["channel_id"]),
            owner_id=str(row["owner_id"]),
            linked_at=float(row["linked_at"] or 0.0),
        )

    # ---- public API ----

    def bind(self, channel_id: str, owner_id: str | None = None) -> BindOutcome:
        """
        Bind a channel to an owner.

        owner_id=None (or blank) records the channel as unlinked if it is new and
        leaves an existing binding untouched.
        """
        channel = (channel_id or "").strip()
        if not channel:
            raise ValueError("channel_id is required")
        owner = _clean_owner(owner_id)

        with self._locks.hold(channel):
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute("SELECT owner_id FROM bindings WHERE channel_id = ?", (channel,))
                row = cur.fetchone()
                now = time.time()

                if row is None:
                    cur.execute(
                        "INSERT INTO bindings(channel_id, owner_id, linked_at) VALUES (?, ?, ?)",
                        (channel, owner or UNLINKED_OWNER, now),
                    )
                    conn.commit()
                    logger.info("Channel bound channel=%s owner=%s", channel, owner or UNLINKED_OWNER)
                    return BindOutcome.CREATED

                current = str(row["owner_id"])
                if owner is None or owner == current:
                    return BindOutcome.UNCHANGED

                cur.execute(
                    "UPDATE bindings SET owner_id = ?, linked_at = ? WHERE channel_id = ?",
                    (owner, now, channel),
                )
                conn.commit()
                logger.info("Channel rebound channel=%s owner=%s (was %s)", channel, owner, current)
                return BindOutcome.UPDATED
            finally:
                conn.close()

    def unbind(self, channel_id: str) -> bool:
        """Remove a binding. Unknown channels are a no-op (returns False)."""
        channel = (channel_id or "").strip()
        if not channel:
            return False

        with self._locks.hold(channel):
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM bindings WHERE channel_id = ?", (channel,))
                conn.commit()
                removed = cur.rowcount == 1
            finally:
                conn.close()

        if removed:
            logger.info("Channel unbound channel=%s", channel)
        return removed

    def get(self, channel_id: str) -> Binding | None:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM bindings WHERE channel_id = ?", ((channel_id or "").strip(),))
            row = cur.fetchone()
            return self._row_to_binding(row) if row else None
        finally:
            conn.close()

    def is_bound(self, channel_id: str) -> bool:
        return self.get(channel_id) is not None

    def resolve(self, owner_id: str) -> set[str]:
        """All channel ids bound to an owner (never the unlinked placeholder's)."""
        owner = _clean_owner(owner_id)
        if owner is None:
            return set()
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT channel_id FROM bindings WHERE owner_id = ?", (owner,))
            return {str(r["channel_id"]) for r in cur.fetchall()}
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM bindings").fetchone()
            return int(n)
        finally:
            conn.close()
