"""
Retry utilities.

Exponential backoff for transient failures.
"""

import asyncio
import functools
import random
from typing import Tuple, Type

from shared.errors import RetryableError
from shared.logging import get_logger

logger = get_logger("retry")


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2,
    retry_on: Tuple[Type[BaseException], ...] = (RetryableError,)
):
    """
    Retry an async function with exponential backoff.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last exception is re-raised once attempts
    are exhausted.

    Args:
        max_attempts: Total attempts including the first call
        base_delay: Delay before the first retry in seconds (doubles each time)
        retry_on: Exception types that trigger a retry
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_attempts:
                        raise
                    delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay / 4)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed, retrying in {delay:.2f}s",
                        extra={"error": str(e)}
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
