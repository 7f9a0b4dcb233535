"""Retry an async call with exponential backoff."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 1.0,
) -> T:
    """
    Await fn() up to max_attempts times. Delay doubles after each failure
    (base_delay, 2*base_delay, ...) capped at max_delay. The last error is re-raised.
    max_attempts < 1 is treated as 1.
    """
    attempts = max(1, max_attempts)
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts:
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning("Attempt %d/%d failed: %s; retrying in %.2fs", attempt, attempts, e, delay)
            await asyncio.sleep(delay)
            attempt += 1
