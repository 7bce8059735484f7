# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from deadline_relay.calendar.google import CalendarRequestError


@dataclass(slots=True)
class SentMessage:
    channel_id: str
    text: str


@dataclass
class FakeMessenger:
    """
    Fake OutboundMessenger.

    - records every send
    - channels listed in `fail_channels` raise instead of sending
    - `gate` (if set) blocks every send until released, to hold a dispatch in flight
    """

    sent: list[SentMessage] = field(default_factory=list)
    fail_channels: set[str] = field(default_factory=set)
    gate: asyncio.Event | None = None
    attempts: int = 0

    async def send_text(self, *, channel_id: str, text: str) -> None:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if channel_id in self.fail_channels:
            raise ConnectionError(f"channel {channel_id} unreachable")
        self.sent.append(SentMessage(channel_id=channel_id, text=text))

    def texts_for(self, channel_id: str) -> list[str]:
        return [m.text for m in self.sent if m.channel_id == channel_id]


class ManualClock:
    """Clock that only moves when the test says so."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now


class FakeTimer:
    """
    Timer that records requested sleeps and advances a ManualClock instead of waiting.

    `stop_after` ends a scanner loop: once that many sleeps happened, `on_limit`
    is called (usually scanner.stop).
    """

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.clock = clock
        self.sleeps: list[float] = []
        self.stop_after: int | None = None
        self.on_limit: Any = None

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        if self.stop_after is not None and len(self.sleeps) >= self.stop_after and self.on_limit:
            self.on_limit()
        # Let fired ticks run.
        await asyncio.sleep(0)


class FakeCalendar:
    """
    In-memory CalendarService.

    `fail_next` makes the next N calls raise; `delay` makes calls slow (for timeouts).
    `stall_after_insert` stores the event, then keeps the insert call hanging
    (the server committed, the caller times out).
    Events are keyed by id, like the real service with client-chosen ids.
    """

    def __init__(self) -> None:
        self.events: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_next = 0
        self.delay = 0.0
        self.stall_after_insert = 0.0

    async def _maybe_fail(self, op: str, event_id: str) -> None:
        self.calls.append((op, event_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise CalendarRequestError(status_code=503, message="backend unavailable")

    async def insert_event(self, credentials: Any, body: dict[str, Any]) -> str:
        event_id = str(body["id"])
        await self._maybe_fail("insert", event_id)
        self.events[event_id] = dict(body)
        if self.stall_after_insert:
            await asyncio.sleep(self.stall_after_insert)
        return event_id

    async def patch_event(self, credentials: Any, event_id: str, body: dict[str, Any]) -> None:
        await self._maybe_fail("patch", event_id)
        if event_id not in self.events:
            raise CalendarRequestError(status_code=404, message="Not Found")
        self.events[event_id].update({k: v for k, v in body.items() if k != "id"})

    async def delete_event(self, credentials: Any, event_id: str) -> None:
        await self._maybe_fail("delete", event_id)
        self.events.pop(event_id, None)

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]
