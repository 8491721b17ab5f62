"""Structured logging — structlog configured once per process."""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Falls back to ``Settings.log_level`` / ``Settings.log_json`` when the
    arguments are omitted. Safe to call more than once.
    """
    if level is None or json_output is None:
        from config.settings import get_settings

        settings = get_settings()
        level = level or settings.log_level
        json_output = settings.log_json if json_output is None else json_output

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named structlog logger."""
    return structlog.get_logger(name)
