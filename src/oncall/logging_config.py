"""structlog configuration.

Usage:
    from oncall.logging_config import configure_logging

    configure_logging(level="INFO", fmt="console")  # human-readable
    configure_logging(level="INFO", fmt="json")     # one JSON object per line

    log = structlog.get_logger(__name__)
    log.info("incident_triggered", incident_id="...")

Logs go to stderr so command output on stdout stays machine-readable.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import Processor


def _level_number(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for the process.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        fmt: ``"json"`` for JSON lines, anything else for the console renderer.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if fmt == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
        context_class=dict,
        logger_factory=_stderr_logger,
        # sys.stderr is looked up per logger, so bound loggers must not be cached
        cache_logger_on_first_use=False,
    )


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    return structlog.PrintLogger(file=sys.stderr)
