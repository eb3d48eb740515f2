"""
utils/logging.py — structlog configuration for canstat.

Structured logging with JSON or human-readable console output, controlled
by settings.log_format. Logs go to stderr so CLI output on stdout stays
clean for piping. Call configure_logging() once at process startup (the
CLI does this).

Usage:
    from canstat_pipeline.utils.logging import configure_logging, get_logger

    configure_logging()
    log = get_logger("canstat_pipeline.fetcher", identifier="18-10-0004-01")
    log.info("cache_hit", bytes=20480)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from canstat_shared.config import settings


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(
    log_level: str | None = None,
    log_format: str | None = None,
) -> None:
    """
    Configure structlog for the process. Idempotent.

    Args:
        log_level:  Override settings.log_level ("DEBUG", "INFO", …).
        log_format: Override settings.log_format ("json" | "console").
    """
    level = _level(log_level or settings.log_level)
    fmt = log_format or settings.log_format

    # httpx logs every request at INFO through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    if fmt == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # PrintLogger has no name, so the logger name travels as bound context
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_values: Any) -> structlog.BoundLogger:
    """
    Return a structlog logger bound to its name and any initial context.

    Args:
        name:             Logger name (conventionally the module __name__).
        **initial_values: Key-value pairs merged into every log record.
    """
    return structlog.get_logger(name, logger=name, **initial_values)  # type: ignore[no-any-return]
