"""
Exponential backoff for connection and I/O errors.

Only ``RetryableError`` subclasses are retried; everything else (query
errors, schema errors, programming errors) propagates on the first
attempt.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from core.exceptions import RetryExhaustedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Attributes:
        max_attempts: Total attempts including the first one
        initial_interval: Delay before the first retry, in seconds
        max_interval: Upper bound for a single delay, in seconds
        multiplier: Growth factor between consecutive delays
        jitter: Sleep a random duration in [0, delay] instead of delay
        max_elapsed: Give up once this many seconds have passed
    """
    max_attempts: int = 4
    initial_interval: float = 1.0
    max_interval: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    max_elapsed: float = 300.0

    @classmethod
    def from_config(cls, config) -> "BackoffPolicy":
        """Build a policy from a ``RetryConfig``."""
        return cls(
            max_attempts=config.max_retries + 1,
            initial_interval=config.initial_backoff_ms / 1000.0,
            max_interval=config.max_backoff_ms / 1000.0,
            multiplier=config.multiplier,
            jitter=config.jitter,
            max_elapsed=config.max_elapsed_secs,
        )

    @classmethod
    def no_retry(cls) -> "BackoffPolicy":
        return cls(max_attempts=1)

    def delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (0-based), jitter not applied."""
        return min(self.initial_interval * (self.multiplier ** retry_number), self.max_interval)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run ``operation`` until it succeeds, retrying retryable errors.

    Raises:
        RetryExhaustedError: When attempts or elapsed time ran out while the
            operation kept raising retryable errors
        Exception: Any non-retryable error, unchanged
    """
    start = time.monotonic()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise

            if policy.max_attempts <= 1:
                raise

            elapsed = time.monotonic() - start
            if attempt >= policy.max_attempts or elapsed >= policy.max_elapsed:
                raise RetryExhaustedError(
                    description,
                    attempts=attempt,
                    last_error=e,
                )

            delay = policy.delay(attempt - 1)
            if policy.jitter:
                delay = random.uniform(0, delay)

            logger.warning(
                f"{description} failed ({type(e).__name__}). "
                f"Retrying in {delay:.2f} seconds (attempt {attempt}/{policy.max_attempts})"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await sleep(delay)
