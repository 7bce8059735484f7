# src/deadline_relay/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from ..calendar.credentials import CredentialStore
    from ..calendar.mirror import CalendarMirror
    from ..calendar.outbox import MirrorOutbox
    from ..identity.registry import IdentityRegistry
    from ..reminders.dispatcher import NotificationDispatcher
    from ..reminders.scanner import DeadlineScanner
    from ..tasks.task_store import TaskStore
    from .ports import NotificationLedger


@dataclass
class AppState:
    """Everything the connectors and command handlers need, wired once in bootstrap."""

    settings: Any
    tz: tzinfo

    task_store: TaskStore
    registry: IdentityRegistry
    ledger: NotificationLedger
    credentials: CredentialStore

    mirror: CalendarMirror
    dispatcher: NotificationDispatcher
    scanner: DeadlineScanner

    # Set when RELAY_CALENDAR_MODE=queued.
    outbox: MirrorOutbox | None = None
    http_client: httpx.AsyncClient | None = None

    @property
    def default_deadline_time(self) -> str:
        return str(getattr(self.settings, "default_deadline_time", "09:00:00"))
