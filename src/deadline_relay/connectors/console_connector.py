# src/deadline_relay/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import datetime

from ..cli.commands import console_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

CONSOLE_CHANNEL_ID = "console"


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleMessenger:
    """Prints reminders to stdout; any channel id is accepted and shown."""

    def __init__(self, write: Callable[[str], None] = _print_ts) -> None:
        self._write = write

    async def send_text(self, *, channel_id: str, text: str) -> None:
        prefix = "" if channel_id == CONSOLE_CHANNEL_ID else f"-> {channel_id}\n"
        self._write(f"{prefix}{text}")


def _start_reader(
    loop: asyncio.AbstractEventLoop,
    queue: asyncio.Queue[str | None],
    read_line: Callable[[str], str],
) -> threading.Thread:
    # Daemon thread: a pending input() must not keep the process alive on shutdown.
    def reader() -> None:
        while True:
            try:
                line: str | None = read_line(">>> ")
            except (EOFError, KeyboardInterrupt):
                line = None
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                # Loop already closed.
                return
            if line is None:
                return

    t = threading.Thread(target=reader, name="console-reader", daemon=True)
    t.start()
    return t


async def run_console_loop(
    state: AppState,
    stop_event: asyncio.Event,
    *,
    read_line: Callable[[str], str] = input,
) -> None:
    """Local REPL; the scanner keeps ticking while the prompt waits."""
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] /start <owner_id> to link, /help for commands, /exit to quit.")

    lines: asyncio.Queue[str | None] = asyncio.Queue()
    _start_reader(asyncio.get_running_loop(), lines, read_line)

    while not stop_event.is_set():
        raw = await lines.get()
        if raw is None:
            logger.info("Console input closed, exiting.")
            break

        line = raw.strip()
        if not line:
            continue
        if line.lower() in ("/exit", "/quit"):
            break

        try:
            reply = await console_registry.handle(state, line, CONSOLE_CHANNEL_ID)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        _print_ts(reply if reply is not None else "Not a command. Use /help to list available commands.")

    stop_event.set()
    logger.info("Console connector finished.")
