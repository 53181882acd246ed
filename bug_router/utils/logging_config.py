"""Logging helpers shared by every bug_router module."""

from __future__ import annotations

import logging
import sys

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | int = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
    """Configure the root logger once for CLI and scheduled runs."""

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, message: str, exc: BaseException) -> None:
    """Log ``exc`` with its type and traceback under ``message``."""

    logger.error("%s: %s: %s", message, type(exc).__name__, exc, exc_info=exc)


def log_retry_attempt(
    logger: logging.Logger,
    operation: str,
    attempt: int,
    max_attempts: int,
    exc: BaseException,
) -> None:
    logger.warning(
        "Attempt %d/%d for %s failed (%s); retrying",
        attempt,
        max_attempts,
        operation,
        exc,
    )
