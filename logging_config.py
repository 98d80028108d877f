"""
logging_config.py - Centralized logging configuration.

Every module logs through `get_logger(__name__)` with structured
`event_name | key=value | ...` messages; the CLI and API call
`setup_logging` once at startup.
"""

from __future__ import annotations

import functools
import logging
import sys
from typing import Callable, Optional, TextIO, TypeVar

T = TypeVar("T")

PLAIN_FORMAT = "%(asctime)s [%(name)-16s] %(levelname)-7s %(message)s"
JSON_FORMAT = (
    '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
    '"module":"%(name)s","message":"%(message)s"}'
)
DATE_FORMAT = "%H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure the root logger with one stderr handler.

    Args:
        level: Logging level.
        json_format: If True, emit JSON-like log lines.
        stream: Output stream, stderr by default (stdout carries reports).
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter(JSON_FORMAT if json_format else PLAIN_FORMAT, datefmt=DATE_FORMAT)
    )
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)


def graceful(default_factory: Callable[[], T], log_level: int = logging.ERROR):
    """Decorator that logs an exception and returns a default value instead.

    Used on auxiliary estimators (sibling labor-rate inference) whose
    failure should degrade the result rather than abort a comparison.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (KeyboardInterrupt, SystemExit):
                raise
            except Exception as exc:
                logger = logging.getLogger(func.__module__)
                logger.log(
                    log_level,
                    "%s_failed | error_type=%s | error=%s | fallback=default",
                    func.__name__,
                    type(exc).__name__,
                    exc,
                    exc_info=True,
                )
                return default_factory()

        return wrapper

    return decorator
