"""Structured logging configuration using structlog.

Services log snake_case events with keyword context through get_logger().
Output goes to stderr, so CLI stdout stays free for reports: JSON lines in
production, a console renderer during development.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

from src.studio.config import StudioConfig


def setup_logging(
    json_output: bool = False, log_level: str = "INFO", stream: TextIO | None = None
) -> None:
    """Configure structlog and route stdlib logging through the same stream.

    Args:
        json_output: If True, output JSON (production). If False, console format (dev).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Destination, stderr by default.
    """
    stream = stream or sys.stderr
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(stream)]
    root.setLevel(numeric_level)


def setup_logging_from_config(config: StudioConfig) -> None:
    setup_logging(json_output=config.log_json, log_level=config.log_level)


@contextmanager
def job_context(**context: Any) -> Iterator[None]:
    """Bind context (job name, run id) to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**context):
        yield


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance bound with the module name.

    Args:
        name: Logger name (typically __name__ from calling module).
    """
    return structlog.get_logger(name)
