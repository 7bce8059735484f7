# src/deadline_relay/tasks/task_models.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, time, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_TIME = "09:00:00"

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(slots=True, frozen=True)
class FileRef:
    """Reference to an attachment kept by the file storage collaborator."""

    name: str
    original_name: str = ""
    content_type: str = ""
    path: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "original_name": self.original_name,
            "content_type": self.content_type,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> FileRef | None:
        if not isinstance(raw, dict):
            return None
        name = str(raw.get("name") or "").strip()
        if not name:
            return None
        return cls(
            name=name,
            original_name=str(raw.get("original_name") or ""),
            content_type=str(raw.get("content_type") or ""),
            path=str(raw.get("path") or ""),
        )


@dataclass(slots=True)
class Task:
    id: str
    owner_id: str
    title: str
    category: str

    # Normalized ISO-8601 string, exactly as stored.
    deadline: str

    completed: bool
    created_at: float
    updated_at: float

    file: FileRef | None = None
    external_event_id: str | None = None

    @property
    def file_name(self) -> str | None:
        return self.file.name if self.file is not None else None


def resolve_timezone(name: str | None) -> tzinfo:
    """Map a zone name to tzinfo; unknown names fall back to UTC with a warning."""
    key = (name or "").strip()
    if not key or key.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", key)
        return UTC


def _check_time_of_day(value: str) -> str:
    try:
        time.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"invalid default deadline time: {value!r}") from exc
    return value


def normalize_deadline(raw: str | None, *, default_time: str = DEFAULT_DEADLINE_TIME) -> str:
    """
    Normalize a user-supplied deadline before storage.

    - "YYYY-MM-DD" gets the default local time-of-day appended ("YYYY-MM-DDT09:00:00").
    - Anything else must parse as an ISO-8601 datetime and is kept as given.

    Raises ValueError for empty or unparseable input.
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("deadline is required")

    if _DATE_ONLY_RE.match(value):
        value = f"{value}T{_check_time_of_day(default_time)}"

    try:
        datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"unparseable deadline: {raw!r}") from exc
    return value


def parse_deadline(
    raw: str | None,
    *,
    tz: tzinfo = UTC,
    default_time: str = DEFAULT_DEADLINE_TIME,
) -> datetime:
    """
    Parse a stored deadline into an aware datetime.

    Naive values are local time in `tz`. Date-only values (legacy rows written
    before normalization) get `default_time`, so the scanner and the calendar
    mirror agree on when a task is due.
    """
    value = normalize_deadline(raw, default_time=default_time)
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt
