from __future__ import annotations

import logging
from functools import wraps
from typing import Callable, ParamSpec, TypeVar

from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import TransientError

P = ParamSpec("P")
T = TypeVar("T")


def retry_transient(
    max_attempts: int = 3,
    base_wait: float = 0.5,
    max_wait: float = 10.0,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for retrying transient errors with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts, the first call included (default: 3)
        base_wait: Base wait time in seconds before exponential backoff (default: 0.5)
        max_wait: Maximum wait time in seconds between retries (default: 10.0)

    Returns:
        A decorator that wraps functions with retry logic.

    Raises:
        TransientError: The last error, once all attempts are exhausted.
    """
    logger = logging.getLogger(__name__)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=base_wait, max=max_wait, exp_base=2),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator
