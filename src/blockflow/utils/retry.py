"""Retry with exponential backoff and timeout wrappers for async operations."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, field_validator

from ..errors import BlockTimeoutError, is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded retry policy.

    Delay before retry ``attempt`` (0-based) is
    ``initial_delay * backoff_multiplier ** attempt``, capped at ``max_delay``.
    """
    max_retries: int = 0
    initial_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0  # Fraction of the delay, e.g. 0.1 = +/-10%

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}")
        return v

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"delays must be >= 0, got {v}")
        return v

    @field_validator("backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {v}")
        return v

    @field_validator("jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError(f"jitter must be between 0 and 1, got {v}")
        return v

    def calculate_delay(self, attempt: int) -> float:
        delay = self.initial_delay * (self.backoff_multiplier ** attempt)
        delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Callable[[BaseException], bool] = is_transient,
    on_retry: Optional[Callable[[int, BaseException], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation: str = "operation",
) -> T:
    """Call ``fn`` until it succeeds or the policy is exhausted.

    Only errors accepted by ``retry_on`` are retried; anything else, and the
    last error once retries run out, propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_retries or not retry_on(e):
                raise
            delay = policy.calculate_delay(attempt)
            attempt += 1
            logger.warning(
                f"{operation} failed (attempt {attempt}/{policy.max_retries + 1}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await sleep(delay)


async def with_timeout(awaitable: Awaitable[T], timeout: Optional[float], operation: str = "operation") -> T:
    """Race ``awaitable`` against a timer; raise ``BlockTimeoutError`` on expiry."""
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise BlockTimeoutError(timeout, operation) from e
