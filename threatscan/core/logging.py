"""Structured logging for scans.

Provides:
  - JSON records for staging/production log pipelines
  - Coloured one-line records for local runs
  - ``ScanLoggerAdapter``, which binds one scan's id and address to every record
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, TextIO

# Extra attributes copied onto structured records when present.
CONTEXT_FIELDS = ("scan_id", "address", "pattern_id", "detector", "duration_ms")

_LIBRARY_LOGGERS = ("httpcore", "httpx", "asyncio")


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Scan context attached to ``record`` through ``extra``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, scan context at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))

        if record.exc_info and record.exc_info[1]:
            exc_type, exc, _tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Coloured single line: ``time LEVEL [scan] [pattern|detector] logger: message (ms)``."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        context = record_context(record)

        parts = [f"{color}{_record_time(record):%H:%M:%S} {record.levelname:>8s}{self.RESET}"]
        if "scan_id" in context:
            parts.append(f"[{str(context['scan_id'])[:8]}]")
        tag = context.get("pattern_id") or context.get("detector")
        if tag:
            parts.append(f"[{tag}]")
        parts.append(f"{self.DIM}{record.name}{self.RESET}: {record.getMessage()}")
        if "duration_ms" in context:
            parts.append(f"({context['duration_ms']}ms)")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ScanLoggerAdapter(logging.LoggerAdapter):
    """Stamp every record with the bound scan context.

    Per-call ``extra`` is merged over the bound values.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def scan_logger(logger: logging.Logger, scan_id: str, address: str) -> ScanLoggerAdapter:
    return ScanLoggerAdapter(logger, {"scan_id": scan_id, "address": address})


def setup_logging(
    env: str = "development",
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install a single handler on the root logger and return it.

    Args:
        env: Application environment (development/staging/production)
        log_level: Minimum level name; unknown names fall back to INFO
        stream: Output stream, stderr by default (stdout carries scan output)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if env in ("staging", "production") else DevFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return handler
