"""Logging and tracing setup."""

from board.observability.logging_setup import JsonFormatter, setup_logging
from board.observability.tracing import get_tracer, setup_otel

__all__ = ["JsonFormatter", "get_tracer", "setup_logging", "setup_otel"]
