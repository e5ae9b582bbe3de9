"""Retry decorator with exponential backoff for API calls."""

import random
import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

import structlog

logger = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    factor: float = 2.0,
    jitter: bool = False,
) -> float:
    """Delay before retry number ``attempt`` (0-based).

    Grows as ``base_delay * factor**attempt`` and never exceeds ``max_delay``.
    With jitter the result is scaled by a random factor in [0.5, 1.5).
    """
    try:
        delay = min(base_delay * (factor**attempt), max_delay)
    except OverflowError:
        # factor**attempt exceeds float range long after hitting the cap
        delay = max_delay
    if jitter:
        delay *= 0.5 + random.random()
    return delay


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retryable_exceptions: tuple[type[Exception], ...] = (),
    should_retry: Callable[[Exception], bool] | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator for retrying API calls with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        retryable_exceptions: Tuple of exception types to retry on
        should_retry: Optional predicate; a caught exception it rejects is re-raised at once

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    if attempt >= max_retries:
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay, jitter=True)
                    attempt += 1
                    logger.warning(
                        "Request failed, retrying",
                        call=func.__qualname__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=round(delay, 2),
                        error=str(e),
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
