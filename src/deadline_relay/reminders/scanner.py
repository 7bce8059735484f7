# src/deadline_relay/reminders/scanner.py

"""
Deadline scanner.

Every `period` seconds:
- enumerate owners and their open (not completed) tasks,
- parse each deadline (unparseable -> skipped),
- pick tasks due inside the forward window (now, now + window],
- claim (task id, deadline) in the ledger, dispatch, mark notified.

The window only looks forward. A task whose deadline passed while the scanner
was not running (downtime, a tick longer than the window) is never reminded.

Ticks are fired on schedule without waiting for the previous one, so two ticks
may overlap; the ledger claim is what keeps them from sending the same reminder.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo
from enum import StrEnum

from ..core.clock import AsyncioTimer, Clock, SystemClock, Timer
from ..core.ports import NotificationLedger, TaskRepo
from ..tasks.task_models import DEFAULT_DEADLINE_TIME, Task, parse_deadline
from .dispatcher import DispatchReport, NotificationDispatcher

logger = logging.getLogger(__name__)


class ScannerState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPED = "stopped"


@dataclass(slots=True)
class TickReport:
    now: datetime
    window_end: datetime
    scanned: int = 0
    dispatched: list[str] = field(default_factory=list)
    already_notified: list[str] = field(default_factory=list)
    malformed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reports: list[DispatchReport] = field(default_factory=list)


class DeadlineScanner:
    def __init__(
        self,
        task_store: TaskRepo,
        ledger: NotificationLedger,
        dispatcher: NotificationDispatcher,
        *,
        clock: Clock | None = None,
        timer: Timer | None = None,
        period: float = 60.0,
        window: float = 120.0,
        tz: tzinfo = UTC,
        default_time: str = DEFAULT_DEADLINE_TIME,
    ) -> None:
        self._store = task_store
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._timer = timer or AsyncioTimer()
        self._period = max(0.5, float(period))
        self._window = timedelta(seconds=max(1.0, float(window)))
        self._tz = tz
        self._default_time = default_time

        self._stopped = False
        self._active_ticks = 0
        self._in_flight = 0
        self._tick_tasks: set[asyncio.Task[TickReport | None]] = set()

    # ---- state ----

    @property
    def state(self) -> ScannerState:
        if self._stopped:
            return ScannerState.STOPPED
        if self._active_ticks:
            return ScannerState.SCANNING
        return ScannerState.IDLE

    @property
    def in_flight(self) -> int:
        """Dispatches currently awaiting the messenger."""
        return self._in_flight

    # ---- window ----

    def window_for(self, now: datetime) -> tuple[datetime, datetime]:
        return now, now + self._window

    def in_window(self, deadline: datetime, now: datetime) -> bool:
        start, end = self.window_for(now)
        return start < deadline <= end

    # ---- one tick ----

    async def tick(self, now: datetime | None = None) -> TickReport:
        now = now or self._clock.now()
        _, window_end = self.window_for(now)
        report = TickReport(now=now, window_end=window_end)

        self._active_ticks += 1
        try:
            logger.debug("Scanner tick window=(%s, %s]", now.isoformat(), window_end.isoformat())

            try:
                owners = self._store.list_owner_ids()
            except Exception as exc:
                logger.exception("list_owner_ids failed; tick skipped")
                report.errors.append(f"owners: {exc}")
                return report

            for owner_id in owners:
                try:
                    tasks = self._store.list_open_tasks_for_owner(owner_id)
                except Exception as exc:
                    logger.exception("list_open_tasks_for_owner failed owner=%s", owner_id)
                    report.errors.append(f"owner {owner_id}: {exc}")
                    continue

                for task in tasks:
                    report.scanned += 1
                    try:
                        await self._process_task(owner_id, task, now, report)
                    except Exception as exc:
                        logger.exception("Scanner failed on task_id=%s", getattr(task, "id", "?"))
                        report.errors.append(f"task {getattr(task, 'id', '?')}: {exc}")

            try:
                self._ledger.purge_expired(now)
            except Exception as exc:
                logger.exception("Ledger purge failed")
                report.errors.append(f"purge: {exc}")
        finally:
            self._active_ticks -= 1

        if report.dispatched:
            logger.info(
                "Scanner tick done: scanned=%d dispatched=%d malformed=%d errors=%d",
                report.scanned,
                len(report.dispatched),
                len(report.malformed),
                len(report.errors),
            )
        return report

    async def _process_task(self, owner_id: str, task: Task, now: datetime, report: TickReport) -> None:
        try:
            deadline = parse_deadline(task.deadline, tz=self._tz, default_time=self._default_time)
        except ValueError:
            logger.warning("Unparseable deadline task_id=%s deadline=%r; skipped", task.id, task.deadline)
            report.malformed.append(task.id)
            return

        if not self.in_window(deadline, now):
            return

        if not self._ledger.try_claim(task.id, deadline):
            logger.debug("Task %s already notified for deadline %s", task.id, task.deadline)
            report.already_notified.append(task.id)
            return

        self._in_flight += 1
        try:
            dispatch = await self._dispatcher.dispatch(owner_id, task)
        except Exception:
            # Nothing was attempted; let a later tick try again.
            self._ledger.release(task.id, deadline)
            raise
        finally:
            self._in_flight -= 1

        # Marked once an attempt was made, even if no channel is linked or every send failed.
        self._ledger.mark_notified(task.id, deadline)
        report.dispatched.append(task.id)
        report.reports.append(dispatch)

    # ---- loop ----

    async def _safe_tick(self, now: datetime) -> TickReport | None:
        try:
            return await self.tick(now)
        except Exception:
            logger.exception("Scanner tick crashed")
            return None

    def _fire_tick(self) -> None:
        # The tick window is anchored at the scheduled time, not when the task first runs.
        t = asyncio.create_task(self._safe_tick(self._clock.now()))
        self._tick_tasks.add(t)
        t.add_done_callback(self._tick_tasks.discard)

    async def run(self) -> None:
        """
        Fire a tick every period until stop() is called.

        Cancelling run() stops scheduling; ticks already started keep running
        (await drain() to wait for them).
        """
        self._stopped = False
        logger.info(
            "Deadline scanner started period=%.1fs window=%.0fs",
            self._period,
            self._window.total_seconds(),
        )
        while not self._stopped:
            self._fire_tick()
            await self._timer.sleep(self._period)
        logger.info("Deadline scanner stopped scheduling ticks")

    def stop(self) -> None:
        self._stopped = True

    async def drain(self) -> None:
        """Wait for ticks that are already running. In-flight sends are not interrupted."""
        pending = list(self._tick_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
