# tests/test_logging_setup.py

from __future__ import annotations

import logging

from deadline_relay.logging_setup import _ConsoleNoiseFilter


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter_keeps_app_logs_and_mutes_libraries() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("deadline_relay.reminders.scanner", logging.INFO))
    assert not f.filter(_record("deadline_relay.connectors.matrix_connector", logging.INFO))
    assert f.filter(_record("deadline_relay.connectors.matrix_client", logging.WARNING))

    assert not f.filter(_record("httpx", logging.WARNING))
    assert not f.filter(_record("nio.crypto", logging.WARNING))
    assert f.filter(_record("py.warnings", logging.ERROR))
