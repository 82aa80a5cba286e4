"""Structured logging setup."""

import logging
import sys
from typing import TextIO

import structlog


def setup_logging(
    debug: bool = True,
    level: int | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging.

    Console rendering in debug mode, JSON lines otherwise. The CLI passes
    stderr as the stream so that command output on stdout stays parseable.
    """
    if level is None:
        level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if not debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )
