"""Retry with exponential backoff for source API calls."""

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before retry number attempt+1 (attempt is zero-based)."""
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Execute an async function with retry logic.

    Raises:
        The last exception if every attempt fails. Exceptions not listed in
        retryable_exceptions propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == max_attempts - 1:
                logger.error(
                    "retry_exhausted",
                    function=getattr(func, "__name__", repr(func)),
                    max_attempts=max_attempts,
                    error=str(e),
                )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)
            logger.warning(
                "retry_attempt",
                function=getattr(func, "__name__", repr(func)),
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay=round(delay, 2),
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
