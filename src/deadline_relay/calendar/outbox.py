# src/deadline_relay/calendar/outbox.py

"""
Queued calendar mirror.

submit() returns immediately; one worker applies operations in FIFO order, so a
create is always applied before a later update of the same task. Failed
operations are retried with exponential backoff. Retried creates cannot produce
duplicate events: the event id is derived from the task id, and a repeated
insert is answered with 409 which the calendar client treats as success.

A timed-out create is left for the next attempt to settle (the mirror runs with
discard_on_timeout=False here). Only when the outbox gives up on a create does
it remove whatever event the attempts may have left behind.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..core.clock import AsyncioTimer, Timer
from ..tasks.task_models import Task
from .mirror import TASK_GONE, CalendarMirror, MirrorOp, MirrorResult, MirrorStatus

logger = logging.getLogger(__name__)

TaskLoader = Callable[[str], Task | None]


@dataclass(slots=True)
class _Job:
    op: MirrorOp
    task: Task
    attempt: int = 0


class MirrorOutbox:
    def __init__(
        self,
        mirror: CalendarMirror,
        *,
        load_task: TaskLoader | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        timer: Timer | None = None,
    ) -> None:
        self._mirror = mirror
        self._load_task = load_task
        self._max_attempts = max(1, int(max_attempts))
        self._backoff = max(0.0, float(backoff_seconds))
        self._timer = timer or AsyncioTimer()
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self.results: list[MirrorResult] = []

    def submit(self, op: MirrorOp, task: Task) -> None:
        self._queue.put_nowait(_Job(op=op, task=task))
        logger.debug("Calendar %s queued task_id=%s (depth=%d)", op.value, task.id, self._queue.qsize())

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _fresh(self, job: _Job) -> Task | None:
        # Deletes carry their own snapshot: the row is already gone.
        if job.op == MirrorOp.DELETE or self._load_task is None:
            return job.task
        return self._load_task(job.task.id)

    async def _process(self, job: _Job) -> None:
        while True:
            job.attempt += 1
            task = self._fresh(job)
            if task is None:
                logger.info("Calendar %s dropped: task %s no longer exists", job.op.value, job.task.id)
                return

            result = await self._mirror.apply(job.op, task)
            if result.reason == TASK_GONE:
                self._remember(result)
                return
            if result.status != MirrorStatus.FAILED or job.attempt >= self._max_attempts:
                if result.status == MirrorStatus.FAILED:
                    logger.warning(
                        "Calendar %s gave up task_id=%s after %d attempts: %s",
                        job.op.value,
                        task.id,
                        job.attempt,
                        result.error,
                    )
                    if job.op == MirrorOp.CREATE:
                        await self._mirror.discard_create(task)
                self._remember(result)
                return

            delay = self._backoff * (2 ** (job.attempt - 1))
            logger.info(
                "Calendar %s retry %d/%d in %.1fs task_id=%s",
                job.op.value,
                job.attempt + 1,
                self._max_attempts,
                delay,
                task.id,
            )
            await self._timer.sleep(delay)

    def _remember(self, result: MirrorResult) -> None:
        self.results.append(result)
        if len(self.results) > 256:
            del self.results[:-256]

    async def run(self) -> None:
        """Worker loop; ends after stop() once the queue ahead of it is processed."""
        logger.info("Calendar outbox worker started (max_attempts=%d)", self._max_attempts)
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    break
                await self._process(job)
            except Exception:
                logger.exception("Calendar outbox job crashed op=%s", getattr(job, "op", "?"))
            finally:
                self._queue.task_done()
        logger.info("Calendar outbox worker stopped")

    async def join(self) -> None:
        await self._queue.join()

    def stop(self) -> None:
        self._queue.put_nowait(None)
