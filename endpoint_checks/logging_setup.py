from __future__ import annotations

import logging
import os
import sys

import structlog


def resolve_log_level(configured: str | None) -> int:
    name = configured or os.getenv("LOG_LEVEL") or "INFO"
    return getattr(logging, str(name).strip().upper(), logging.INFO)


def configure_logging(level: str | None = None, *, json_logging: bool = False) -> None:
    """
    Structured logging to stderr. Stdout stays reserved for the summary
    JSON lines.
    """
    renderer = structlog.processors.JSONRenderer() if json_logging else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_log_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx logs every request URL at INFO, query strings included.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
