"""Retry utilities with exponential backoff."""

import time
from functools import wraps
from typing import Callable, Tuple, Type

import structlog

from policy_sync.errors import TransientSourceError

log = structlog.stdlib.get_logger()


def backoff_delays(base_delay: float, max_delay: float, attempts: int) -> list[float]:
    """
    Compute the sleep schedule used between retry attempts.

    Args:
        base_delay: Delay before the first retry in seconds
        max_delay: Ceiling applied to every delay
        attempts: Number of retries

    Returns:
        Delays doubling from base_delay, each capped at max_delay
    """
    return [min(base_delay * (2**attempt), max_delay) for attempt in range(attempts)]


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exceptions: Tuple[Type[Exception], ...] = (TransientSourceError,),
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Only the listed exception types are retried; anything else (such as a
    not-found or rate-limit error) propagates on the first attempt.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated function with retry logic
    """
    delays = backoff_delays(base_delay, max_delay, max_retries)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        log.info(
                            "retry_succeeded",
                            function=func.__name__,
                            attempt=attempt + 1,
                        )
                    return result
                except exceptions as e:
                    if attempt == max_retries:
                        log.error(
                            "max_retries_reached",
                            function=func.__name__,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise

                    delay = delays[attempt]
                    log.warning(
                        "retrying_after_error",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error=str(e),
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
