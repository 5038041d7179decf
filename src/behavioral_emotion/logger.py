"""Structured logging configuration using *structlog*."""

from __future__ import annotations

import logging
import sys
from typing import Literal

import structlog

LogFormat = Literal["auto", "console", "json"]

# Chatty third-party loggers held at WARNING unless the app runs at DEBUG.
_QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "uvicorn.access")


def _renderers(fmt: LogFormat) -> list[structlog.types.Processor]:
    if fmt == "auto":
        fmt = "console" if sys.stderr.isatty() else "json"
    if fmt == "console":
        return [structlog.dev.ConsoleRenderer()]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(level: str = "INFO", fmt: LogFormat = "auto") -> None:
    """Configure structlog and align the stdlib root logger with it.

    Request-scoped values bound through ``structlog.contextvars`` (the API
    binds ``request_id``) are merged into every event.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(numeric if numeric <= logging.DEBUG else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *_renderers(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
