"""Retry decorator for collaborator HTTP calls."""

from __future__ import annotations

import functools
import time
from typing import Callable, Optional, Tuple, Type

import requests

from ..utils.logging_config import get_logger, log_exception, log_retry_attempt

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def retry_on_transient_error(
    max_attempts: int = 3,
    delay_seconds: float = 1.0,
    exceptions: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    sleep: Optional[Callable[[float], None]] = None,
):
    """
    Decorator to retry a call on connection failures and timeouts.

    HTTP error statuses are not retried; the caller decides what they mean.

    Args:
        max_attempts: Maximum number of attempts
        delay_seconds: Initial delay between attempts, scaled by attempt number
        exceptions: Exception types treated as transient

    Returns:
        Decorator function
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        log_exception(logger, f"Final attempt failed for {func.__name__}", e)
                        raise
                    log_retry_attempt(logger, func.__name__, attempt, max_attempts, e)
                    (sleep or time.sleep)(delay_seconds * attempt)
            raise RuntimeError(f"Unexpected error in retry decorator for {func.__name__}")

        return wrapper
    return decorator
