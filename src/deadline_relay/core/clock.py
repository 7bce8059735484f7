# src/deadline_relay/core/clock.py

"""
Time sources.

The scanner and the ledger never call datetime.now()/asyncio.sleep() directly;
they take a Clock and a Timer so tests can drive virtual time.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class Timer(Protocol):
    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock, always timezone-aware (UTC)."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class AsyncioTimer:
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, float(seconds)))
