"""Structured logging for Taskflow.

Every module logs through ``logging.getLogger(__name__)``; ``setup_logging``
attaches handlers to the top-level ``board``, ``workflow`` and ``api``
loggers. Console output is human-readable, the optional file handler writes
one JSON object per line.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from opentelemetry import trace

LOGGER_NAMES = ("board", "workflow", "api")


class JsonFormatter(logging.Formatter):
    """JSON formatter with trace context when a span is active."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            entry["trace_id"] = format(span_context.trace_id, "032x")
            entry["span_id"] = format(span_context.span_id, "016x")

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            entry.update(record.extra_fields)

        return json.dumps(entry, default=str)


def setup_logging(
    log_level: Union[str, int] = logging.INFO,
    log_file: Optional[Path] = None,
    json_console: bool = False,
) -> None:
    """Configure handlers for the Taskflow loggers. Safe to call repeatedly."""
    console_formatter: logging.Formatter = (
        JsonFormatter()
        if json_console
        else logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        logger.handlers.clear()
        logger.propagate = False

        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(console_formatter)
        logger.addHandler(console)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JsonFormatter())
            logger.addHandler(file_handler)

    logging.getLogger("board").info("Taskflow logging initialized")
