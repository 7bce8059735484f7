# src/deadline_relay/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any

from .task_models import FileRef, Task

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT '',
                    deadline TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    file TEXT,
                    external_event_id TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("category", "TEXT NOT NULL DEFAULT ''")
            add_col("completed", "INTEGER NOT NULL DEFAULT 0")
            add_col("file", "TEXT")
            add_col("external_event_id", "TEXT")
            add_col("created_at", "REAL NOT NULL DEFAULT 0")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_open ON tasks(owner_id, completed)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _file_to_str(file: FileRef | None) -> str | None:
        if file is None:
            return None
        return json.dumps(file.to_dict(), ensure_ascii=False)

    @staticmethod
    def _str_to_file(s: str | None) -> FileRef | None:
        if not s:
            return None
        try:
            return FileRef.from_dict(json.loads(s))
        except Exception:
            logger.warning("Unreadable file column; ignoring: %r", s)
            return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"] or ""),
            category=str(row["category"] or ""),
            deadline=str(row["deadline"] or ""),
            completed=bool(row["completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            file=self._str_to_file(row["file"]),
            external_event_id=row["external_event_id"] or None,
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        owner_id: str,
        title: str,
        category: str,
        deadline: str,
        file: FileRef | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Insert a task. The deadline is stored as given (normalize it first)."""
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id is required")
        if not title or not title.strip():
            raise ValueError("title is required")
        if not deadline or not deadline.strip():
            raise ValueError("deadline is required")

        now = time.time()
        new_id = task_id or uuid.uuid4().hex

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, owner_id, title, category, deadline,
                    completed, file, external_event_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 0, ?, NULL, ?, ?)
                """,
                (
                    new_id,
                    owner_id.strip(),
                    title.strip(),
                    (category or "").strip(),
                    deadline.strip(),
                    self._file_to_str(file),
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Task added id=%s owner=%s deadline=%s", new_id, owner_id, deadline)
        task = self.get_task(new_id)
        if task is None:
            raise RuntimeError(f"Task {new_id} vanished right after insert")
        return task

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_task_for_owner(self, task_id: str, owner_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None or task.owner_id != owner_id:
            return None
        return task

    def list_owner_ids(self) -> list[str]:
        """Every owner that has at least one task."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT DISTINCT owner_id FROM tasks ORDER BY owner_id")
            return [str(r["owner_id"]) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_tasks_for_owner(self, owner_id: str) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM tasks WHERE owner_id = ? ORDER BY created_at ASC",
                (owner_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_open_tasks_for_owner(self, owner_id: str) -> list[Task]:
        """Tasks with completed = false. Used by the deadline scanner."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE owner_id = ?
                  AND completed = 0
                ORDER BY created_at ASC
                """,
                (owner_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def update_task_fields(
        self,
        task_id: str,
        *,
        title: str | None = None,
        category: str | None = None,
        deadline: str | None = None,
        completed: bool | None = None,
        file: FileRef | None = _UNSET,
    ) -> Task | None:
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            fields.append("title = ?")
            params.append(title.strip())

        if category is not None:
            fields.append("category = ?")
            params.append(category.strip())

        if deadline is not None:
            fields.append("deadline = ?")
            params.append(deadline.strip())

        if completed is not None:
            fields.append("completed = ?")
            params.append(1 if completed else 0)

        if file is not _UNSET:
            fields.append("file = ?")
            params.append(self._file_to_str(file))

        if fields:
            fields.append("updated_at = ?")
            params.append(time.time())
            params.append(str(task_id))

            sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

            conn = self._get_conn()
            try:
                conn.execute(sql, params)
                conn.commit()
            finally:
                conn.close()

        return self.get_task(task_id)

    def set_external_event_id(self, task_id: str, event_id: str | None) -> bool:
        """
        Persist (or clear, with None) the calendar event id mirrored for a task.

        Returns False when the task row no longer exists.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET external_event_id = ?, updated_at = ? WHERE id = ?",
                (event_id, time.time(), str(task_id)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def rename_category(self, owner_id: str, old: str, new: str) -> list[str]:
        """Move an owner's tasks from one category label to another; returns the task ids touched."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT id FROM tasks WHERE owner_id = ? AND category = ?",
                (owner_id, old),
            )
            ids = [str(r["id"]) for r in cur.fetchall()]
            if ids:
                cur.execute(
                    "UPDATE tasks SET category = ?, updated_at = ? WHERE owner_id = ? AND category = ?",
                    (new.strip(), time.time(), owner_id, old),
                )
            conn.commit()
            return ids
        finally:
            conn.close()

    def delete_task(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
