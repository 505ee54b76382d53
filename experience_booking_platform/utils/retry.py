"""
Retrying a check-and-write sequence that lost a race to a concurrent writer.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .exceptions import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to re-run an operation."""

    max_attempts: int = 2
    base_delay: float = 0.05
    max_delay: float = 1.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following attempt number `attempt` (0-based)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            # Spread competing writers apart
            delay *= 0.5 + random.random() / 2
        return delay


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (ConflictError,),
    label: str = "operation",
) -> T:
    """
    Await operation() until it succeeds or the policy is exhausted.

    Only exceptions in retry_on are retried; the last one is re-raised.
    """
    for attempt in range(policy.max_attempts):
        try:
            result = await operation()
        except retry_on as e:
            if attempt + 1 >= policy.max_attempts:
                logger.warning(f"{label} failed after {policy.max_attempts} attempts: {e}")
                raise

            delay = policy.delay_for(attempt)
            logger.info(f"{label} attempt {attempt + 1} lost a race ({e}); retrying in {delay:.3f}s")
            await asyncio.sleep(delay)
            continue

        if attempt:
            logger.info(f"{label} succeeded on attempt {attempt + 1}")
        return result

    raise ValueError("RetryPolicy.max_attempts must be at least 1")


def retry_on_conflict(max_attempts: int = 2, base_delay: float = 0.05, max_delay: float = 1.0, jitter: bool = True):
    """
    Decorator re-running an async method from scratch after a ConflictError.

    The default of two attempts gives exactly one transparent retry before the
    conflict reaches the caller.
    """
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay, jitter=jitter)

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await run_with_retry(
                lambda: func(*args, **kwargs),
                policy,
                label=func.__qualname__,
            )
        return wrapper

    return decorator
