"""Structured logging configuration (JSON and text formatters)."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone

from medicare.services.request_context import get_request_id

# Attributes present on every LogRecord; anything else was passed via ``extra``.
_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Third-party loggers that log every HTTP exchange at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Single-line JSON log output for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        entry: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id

        entry.update(_extra_fields(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable line with optional request ID prefix and ``key=value`` extras."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        ts = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).strftime("%Y-%m-%d %H:%M:%S")

        request_id = get_request_id()
        rid_prefix = f"[{request_id[:12]}] " if request_id else ""

        line = f"{ts} {record.levelname:<8} {rid_prefix}{record.name} - {record.message}"

        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return line


def setup_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Configure the root logger on stderr. Call once at startup.

    stdout is reserved for the MCP stdio transport, so nothing here may
    write to it.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
