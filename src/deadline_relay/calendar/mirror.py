# src/deadline_relay/calendar/mirror.py

"""
Calendar mirror.

Keeps one calendar event per task, keyed by the event id stored on the task:
- on_create inserts and stores the id,
- on_update patches in place, and only if an id is already stored,
- on_delete deletes, and only if an id is stored.

Owners without calendar credentials are silently skipped. Failures (network,
revoked credentials, timeout) are logged and reported in the result; they never
raise to the caller, so the task mutation that triggered the mirror always
stands on its own.

Tasks created before the owner connected a calendar, or whose create failed,
stay unmirrored: update never falls back to create.

An insert that finishes after its task was deleted, or that timed out (the
event id is derived from the task id), is deleted again so no event is left
without a task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, timedelta, tzinfo
from enum import StrEnum
from typing import Any

from ..core.ports import CalendarService, CredentialRepo, TaskRepo
from ..tasks.task_models import DEFAULT_DEADLINE_TIME, Task, parse_deadline
from .google import calendar_event_id

logger = logging.getLogger(__name__)

EVENT_DURATION = timedelta(hours=1)
TASK_GONE = "task deleted during create"


class MirrorOp(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MirrorStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class MirrorResult:
    op: MirrorOp
    task_id: str
    status: MirrorStatus
    event_id: str | None = None
    error: str | None = None
    reason: str | None = None


class CalendarMirror:
    def __init__(
        self,
        task_store: TaskRepo,
        credential_store: CredentialRepo,
        calendar: CalendarService,
        *,
        tz: tzinfo = UTC,
        default_time: str = DEFAULT_DEADLINE_TIME,
        timeout: float = 10.0,
        discard_on_timeout: bool = True,
    ) -> None:
        self._store = task_store
        self._credentials = credential_store
        self._calendar = calendar
        self._tz = tz
        self._default_time = default_time
        self._timeout = max(0.1, float(timeout))
        self._discard_on_timeout = discard_on_timeout

    def build_event(self, task: Task) -> dict[str, Any]:
        """Event body: [deadline, deadline + 1h], task id and attachment name in the description."""
        start = parse_deadline(task.deadline, tz=self._tz, default_time=self._default_time)
        end = start + EVENT_DURATION
        tz_name = getattr(self._tz, "key", None) or "UTC"
        description = "\n".join(
            [
                f"Task ID: {task.id}",
                f"Category: {task.category or 'Uncategorized'}",
                f"File: {task.file_name or 'none'}",
            ]
        )
        return {
            "id": calendar_event_id(task.id),
            "summary": task.title,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        }

    def _skip(self, op: MirrorOp, task: Task, reason: str) -> MirrorResult:
        logger.debug("Calendar %s skipped task_id=%s: %s", op.value, task.id, reason)
        return MirrorResult(op=op, task_id=task.id, status=MirrorStatus.SKIPPED, reason=reason)

    def _fail(self, op: MirrorOp, task: Task, exc: BaseException, event_id: str | None = None) -> MirrorResult:
        if isinstance(exc, TimeoutError):
            error = f"timed out after {self._timeout:.1f}s"
            logger.warning("Calendar %s timed out task_id=%s", op.value, task.id)
        else:
            error = str(exc) or exc.__class__.__name__
            logger.warning("Calendar %s failed task_id=%s: %s", op.value, task.id, error, exc_info=exc)
        return MirrorResult(op=op, task_id=task.id, status=MirrorStatus.FAILED, event_id=event_id, error=error)

    async def on_create(self, task: Task) -> MirrorResult:
        op = MirrorOp.CREATE
        if task.external_event_id:
            return self._skip(op, task, "already mirrored")

        creds = self._credentials.get(task.owner_id)
        if creds is None:
            return self._skip(op, task, "no calendar credentials")

        try:
            body = self.build_event(task)
        except ValueError as exc:
            return self._fail(op, task, exc)

        try:
            event_id = await asyncio.wait_for(self._calendar.insert_event(creds, body), self._timeout)
        except Exception as exc:
            if isinstance(exc, TimeoutError) and self._discard_on_timeout:
                # The insert may have landed after we stopped waiting; the id is ours either way.
                await self._discard(creds, task, str(body["id"]))
            return self._fail(op, task, exc)

        try:
            stored = self._store.set_external_event_id(task.id, event_id)
        except Exception as exc:
            logger.exception("Event %s created but not stored on task_id=%s", event_id, task.id)
            return self._fail(op, task, exc, event_id=event_id)

        if not stored:
            # Deleted while the insert was in flight; its delete saw no event id.
            logger.warning("Task %s deleted during create; removing event %s", task.id, event_id)
            await self._discard(creds, task, event_id)
            return MirrorResult(
                op=op,
                task_id=task.id,
                status=MirrorStatus.FAILED,
                event_id=event_id,
                error=TASK_GONE,
                reason=TASK_GONE,
            )

        task.external_event_id = event_id
        logger.info("Calendar event created task_id=%s event_id=%s", task.id, event_id)
        return MirrorResult(op=op, task_id=task.id, status=MirrorStatus.OK, event_id=event_id)

    async def _discard(self, creds: Any, task: Task, event_id: str) -> None:
        """Best-effort delete of an event no task points to."""
        try:
            await asyncio.wait_for(self._calendar.delete_event(creds, event_id), self._timeout)
        except Exception as exc:
            logger.warning(
                "Could not remove orphaned event %s of task_id=%s: %s",
                event_id,
                task.id,
                str(exc) or exc.__class__.__name__,
            )
            return
        logger.info("Removed orphaned event %s of task_id=%s", event_id, task.id)

    async def discard_create(self, task: Task) -> None:
        """Remove the event a failed create may have left (its id is derived from the task id)."""
        creds = self._credentials.get(task.owner_id)
        if creds is not None:
            await self._discard(creds, task, calendar_event_id(task.id))

    async def on_update(self, task: Task) -> MirrorResult:
        op = MirrorOp.UPDATE
        event_id = task.external_event_id
        if not event_id:
            return self._skip(op, task, "no event id")

        creds = self._credentials.get(task.owner_id)
        if creds is None:
            return self._skip(op, task, "no calendar credentials")

        try:
            body = self.build_event(task)
            await asyncio.wait_for(self._calendar.patch_event(creds, event_id, body), self._timeout)
        except Exception as exc:
            return self._fail(op, task, exc, event_id=event_id)

        logger.info("Calendar event updated task_id=%s event_id=%s", task.id, event_id)
        return MirrorResult(op=op, task_id=task.id, status=MirrorStatus.OK, event_id=event_id)

    async def on_delete(self, task: Task) -> MirrorResult:
        op = MirrorOp.DELETE
        event_id = task.external_event_id
        if not event_id:
            return self._skip(op, task, "no event id")

        creds = self._credentials.get(task.owner_id)
        if creds is None:
            return self._skip(op, task, "no calendar credentials")

        try:
            await asyncio.wait_for(self._calendar.delete_event(creds, event_id), self._timeout)
        except Exception as exc:
            return self._fail(op, task, exc, event_id=event_id)

        try:
            self._store.set_external_event_id(task.id, None)
        except Exception:
            logger.exception("Failed to clear event id on task_id=%s", task.id)
        task.external_event_id = None
        logger.info("Calendar event deleted task_id=%s event_id=%s", task.id, event_id)
        return MirrorResult(op=op, task_id=task.id, status=MirrorStatus.OK, event_id=event_id)

    async def apply(self, op: MirrorOp, task: Task) -> MirrorResult:
        if op == MirrorOp.CREATE:
            return await self.on_create(task)
        if op == MirrorOp.UPDATE:
            return await self.on_update(task)
        return await self.on_delete(task)
