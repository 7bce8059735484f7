# src/deadline_relay/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Libraries that log every request / sync at INFO.
NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "nio": logging.INFO,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    The console shares stdout/stderr with the REPL prompt and printed reminders.

    Lets through:
    - deadline_relay records (Matrix connector only from WARNING up),
    - third-party records only from ERROR up (nio.crypto and py.warnings included).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("deadline_relay."):
            if name.startswith("deadline_relay.connectors.matrix_"):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/relay",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Configure root logging for the long-running service.

    - stderr handler at console_level, filtered;
    - rotating file handler at file_level (relay.log under log_dir), which keeps
      the per-tick scanner DEBUG lines for later inspection.

    Call once, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "relay.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.captureWarnings(True)
    return log_file
