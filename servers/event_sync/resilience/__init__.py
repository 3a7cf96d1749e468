"""Retry and pacing helpers used by source adapters."""

from .rate_limit import RateLimiter
from .retry import backoff_delay, retry_async

__all__ = [
    "retry_async",
    "backoff_delay",
    "RateLimiter",
]
