"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from zkcoord.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    configure_logging,
    get_logger,
    resource_var,
    session_id_var,
)


def make_record(message: str = "Acquired lock", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="zkcoord.locker.base",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    """configure_logging() replaces root handlers; put pytest's back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestJsonFormatter:
    """JSON output."""

    def test_basic_fields(self) -> None:
        data = json.loads(JsonFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "zkcoord.locker.base"
        assert data["message"] == "Acquired lock"
        assert data["line"] == 42
        assert "timestamp" in data
        assert "session_id" not in data
        assert "resource" not in data

    def test_context_is_included(self) -> None:
        """LogContext values appear in the output."""
        with LogContext(session_id="0x1000001", resource="/_zklocking/jobs"):
            data = json.loads(JsonFormatter().format(make_record()))

        assert data["session_id"] == "0x1000001"
        assert data["resource"] == "/_zklocking/jobs"

    def test_extra_fields(self) -> None:
        """Extra attributes are copied; unserializable ones are stringified."""
        data = json.loads(JsonFormatter().format(make_record(lock_number=7, owner=object())))

        assert data["lock_number"] == 7
        assert data["owner"].startswith("<object object")

    def test_exception_info(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))

        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "boom"
        assert "Traceback" in data["exception"]["traceback"]


class TestConsoleFormatter:
    """Human-readable output."""

    def test_format_with_context(self) -> None:
        formatter = ConsoleFormatter(use_colors=False)

        with LogContext(session_id="0x1", resource="/r"):
            line = formatter.format(make_record())

        assert "| INFO     | zkcoord.locker.base | Acquired lock | sid=0x1 res=/r" in line

    def test_no_context_suffix(self) -> None:
        line = ConsoleFormatter(use_colors=False).format(make_record())
        assert line.endswith("| zkcoord.locker.base | Acquired lock")


class TestLogContext:
    """Context variable handling."""

    def test_values_reset_on_exit(self) -> None:
        with LogContext(resource="/outer"):
            with LogContext(resource="/inner"):
                assert resource_var.get() == "/inner"
            assert resource_var.get() == "/outer"
        assert resource_var.get() == ""

    def test_unknown_keys_are_ignored(self) -> None:
        with LogContext(tenant="acme", session_id="0x2"):
            assert session_id_var.get() == "0x2"
        assert session_id_var.get() == ""


class TestConfigureLogging:
    """Root logger setup."""

    def test_json_handler(self, restore_root_logger: logging.Logger) -> None:
        configure_logging(json_format=True, level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("kazoo.client").level == logging.WARNING

    def test_console_handler(self, restore_root_logger: logging.Logger) -> None:
        configure_logging(json_format=False, level="warning")

        assert restore_root_logger.level == logging.WARNING
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_get_logger(self) -> None:
        assert get_logger("zkcoord.test") is logging.getLogger("zkcoord.test")
