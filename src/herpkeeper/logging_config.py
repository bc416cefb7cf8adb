"""Structured logging setup.

Learn: Every module does `logger = structlog.get_logger()` and logs
event-name style keys ("hub.authenticated", username=...). This module
configures the processors once per process: contextvars (request_id bound
by RequestIdMiddleware), level, ISO timestamp, then a console or JSON
renderer depending on HERPKEEPER_LOG_JSON.

The server logs to stdout. The CLI passes stderr so that command output
(an issued token, say) stays clean on stdout.
"""

import logging
import sys
from typing import TextIO

import structlog

from herpkeeper.config import settings

_configured = False


def configure_logging(
    level: str | None = None,
    json_logs: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure stdlib logging and structlog. Safe to call more than once."""
    global _configured
    if _configured:
        return

    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json_logs is None else json_logs
    stream = stream or sys.stdout

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=stream,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )
    _configured = True
