# src/deadline_relay/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs in one asyncio loop:
- the deadline scanner,
- the calendar outbox worker (queued mode only),
- the connector picked by RELAY_CHANNEL (telegram, matrix or console).

SIGINT/SIGTERM stop new scans, let in-flight reminders finish and close the
shared HTTP client.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Callable

import httpx

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..core.ports import OutboundMessenger
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

Connector = Callable[[AppState, asyncio.Event], Awaitable[None]]

SHUTDOWN_TIMEOUT = 15.0


def _select_connector(settings, http_client: httpx.AsyncClient) -> tuple[OutboundMessenger, Connector]:
    channel = getattr(settings, "channel", "console")

    if channel == "telegram":
        from ..connectors.telegram import TelegramBotClient, TelegramMessenger, run_telegram_bot

        bot = TelegramBotClient(
            http_client,
            settings.telegram_bot_token or "",
            api_base=settings.telegram_api_base,
        )

        async def run_telegram(state: AppState, stop_event: asyncio.Event) -> None:
            await run_telegram_bot(state, bot, stop_event)

        return TelegramMessenger(bot), run_telegram

    if channel == "matrix":
        from ..connectors.matrix_connector import MatrixMessenger, run_matrix_bot

        messenger = MatrixMessenger()

        async def run_matrix(state: AppState, stop_event: asyncio.Event) -> None:
            await run_matrix_bot(state, messenger, stop_event)

        return messenger, run_matrix

    from ..connectors.console_connector import ConsoleMessenger, run_console_loop

    return ConsoleMessenger(), run_console_loop


async def _cancel(task: asyncio.Task | None, *, timeout: float = SHUTDOWN_TIMEOUT) -> None:
    if task is None or task.done():
        return
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except TimeoutError:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def run(settings) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_event.set)

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
    try:
        messenger, connector = _select_connector(settings, http_client)
        state = create_initial_state(settings=settings, messenger=messenger, http_client=http_client)

        scanner_task = asyncio.create_task(state.scanner.run(), name="deadline-scanner")
        outbox_task = (
            asyncio.create_task(state.outbox.run(), name="calendar-outbox") if state.outbox is not None else None
        )
        connector_task = asyncio.create_task(connector(state, stop_event), name="connector")
        stop_task = asyncio.create_task(stop_event.wait())

        await asyncio.wait({connector_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        logger.info("Shutting down...")
        stop_event.set()

        # No new ticks; ticks already running finish their sends.
        state.scanner.stop()
        scanner_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scanner_task
        await state.scanner.drain()

        if state.outbox is not None:
            state.outbox.stop()
            await _cancel(outbox_task)

        if not connector_task.done():
            connector_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await connector_task
        stop_task.cancel()
    finally:
        await http_client.aclose()


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=getattr(settings, "data_dir", ".local/relay"), console_level=console_level)

    logger.info(
        "Starting %s (channel=%s, log=%s)...",
        getattr(settings, "app_name", "deadline-relay"),
        settings.channel,
        log_file,
    )

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(settings))

    logger.info("Bye.")


if __name__ == "__main__":
    main()
