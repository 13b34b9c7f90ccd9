"""structlog configuration shared by the API server and client tooling."""
from __future__ import annotations

import logging

import structlog

from docchat.config import settings


def configure_logging(debug: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Debug mode renders coloured key/value lines for the console; otherwise
    every log line is a single JSON object.
    """
    debug = settings.debug if debug is None else debug
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(format="%(message)s", level=level)

    renderer: structlog.types.Processor
    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
