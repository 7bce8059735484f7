# src/deadline_relay/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires stores, ledger, calendar mirror, dispatcher and scanner into AppState.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx

from ..calendar.credentials import CredentialStore
from ..calendar.google import GOOGLE_CALENDAR_API_BASE_URL, GoogleCalendarClient
from ..calendar.mirror import CalendarMirror
from ..calendar.outbox import MirrorOutbox
from ..config import get_settings
from ..core.clock import Clock, SystemClock, Timer
from ..core.ports import CalendarService, NotificationLedger, OutboundMessenger
from ..core.state import AppState
from ..identity.registry import IdentityRegistry
from ..reminders.dispatcher import NotificationDispatcher
from ..reminders.ledger import MemoryLedger, SqliteLedger
from ..reminders.scanner import DeadlineScanner
from ..tasks.task_models import DEFAULT_DEADLINE_TIME, resolve_timezone
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    for attr in ("tasks_db_path", "bindings_db_path", "ledger_db_path", "credentials_db_path"):
        path = getattr(settings, attr, None)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)


def _build_ledger(settings, clock: Clock) -> NotificationLedger:
    retention = timedelta(hours=float(getattr(settings, "ledger_retention_hours", 24.0)))
    claim_timeout = timedelta(seconds=float(getattr(settings, "ledger_claim_timeout_seconds", 300.0)))

    # A claim must outlive the window, or a slow dispatch can be reclaimed by a later tick.
    min_claim = timedelta(
        seconds=float(getattr(settings, "scan_window_seconds", 120.0))
        + float(getattr(settings, "scan_interval_seconds", 60.0))
    )
    if claim_timeout < min_claim:
        logger.warning(
            "Ledger claim timeout %.0fs is shorter than scan window + interval; using %.0fs",
            claim_timeout.total_seconds(),
            min_claim.total_seconds(),
        )
        claim_timeout = min_claim

    if getattr(settings, "ledger_backend", "sqlite") == "memory":
        # Lost on restart: a restart inside the scan window can remind again.
        logger.warning("Using in-memory notification ledger; reminders may repeat after a restart")
        return MemoryLedger(clock=clock, retention=retention, claim_timeout=claim_timeout)

    return SqliteLedger(
        settings.ledger_db_path,
        clock=clock,
        retention=retention,
        claim_timeout=claim_timeout,
    )


def create_initial_state(
    *,
    messenger: OutboundMessenger,
    settings=None,
    clock: Clock | None = None,
    timer: Timer | None = None,
    http_client: httpx.AsyncClient | None = None,
    calendar: CalendarService | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the clock, timer and calendar service) injectable lets
    tests run the whole graph on temp files and virtual time.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    tz = resolve_timezone(getattr(settings, "timezone", "UTC"))
    default_time = str(getattr(settings, "default_deadline_time", DEFAULT_DEADLINE_TIME))

    task_store = TaskStore(settings.tasks_db_path)
    registry = IdentityRegistry(settings.bindings_db_path)
    credentials = CredentialStore(settings.credentials_db_path)
    ledger = _build_ledger(settings, clock)

    if calendar is None:
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
        calendar = GoogleCalendarClient(
            http_client,
            client_id=getattr(settings, "google_client_id", None),
            client_secret=getattr(settings, "google_client_secret", None),
            credential_store=credentials,
            base_url=getattr(settings, "google_calendar_api_base", GOOGLE_CALENDAR_API_BASE_URL),
        )

    mirror = CalendarMirror(
        task_store,
        credentials,
        calendar,
        tz=tz,
        default_time=default_time,
        timeout=float(getattr(settings, "calendar_timeout_seconds", 10.0)),
        # Queued mode retries timed-out creates; a 409 on retry adopts the event.
        discard_on_timeout=getattr(settings, "calendar_mode", "inline") != "queued",
    )

    outbox: MirrorOutbox | None = None
    if getattr(settings, "calendar_mode", "inline") == "queued":
        outbox = MirrorOutbox(
            mirror,
            load_task=task_store.get_task,
            max_attempts=int(getattr(settings, "calendar_max_attempts", 3)),
            timer=timer,
        )

    dispatcher = NotificationDispatcher(registry, messenger, tz=tz, default_time=default_time)
    scanner = DeadlineScanner(
        task_store,
        ledger,
        dispatcher,
        clock=clock,
        timer=timer,
        period=float(getattr(settings, "scan_interval_seconds", 60.0)),
        window=float(getattr(settings, "scan_window_seconds", 120.0)),
        tz=tz,
        default_time=default_time,
    )

    logger.info(
        "State ready: tz=%s ledger=%s calendar_mode=%s",
        getattr(tz, "key", "UTC"),
        getattr(settings, "ledger_backend", "sqlite"),
        "queued" if outbox is not None else "inline",
    )

    return AppState(
        settings=settings,
        tz=tz,
        task_store=task_store,
        registry=registry,
        ledger=ledger,
        credentials=credentials,
        mirror=mirror,
        dispatcher=dispatcher,
        scanner=scanner,
        outbox=outbox,
        http_client=http_client,
    )
