"""
epochrewards/retry.py

Retry policies for polling and resubmission loops.

retry_async runs an attempt loop under trio; retry_sync is the same loop
for the blocking HTTP clients, which run in worker threads.

A policy is data: an interval, a backoff multiplier, an optional cap on the
delay and an optional attempt bound (None = unbounded). Cancellation comes
from the surrounding trio cancel scope; the only checkpoint inside a retry
loop is the sleep between attempts.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import trio

from .errors import TransientError

logger = logging.getLogger("epochrewards.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how many times to try an operation."""
    interval: float
    max_attempts: Optional[int] = None    # None = retry forever
    backoff: float = 1.0
    max_interval: float = 60.0
    jitter: float = 0.0

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError("interval must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None

    def allows(self, attempt: int) -> bool:
        """Whether attempt number `attempt` (1-based) may run."""
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        d = min(self.interval * (self.backoff ** (attempt - 1)), self.max_interval)
        if self.jitter:
            d *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, d)

    @classmethod
    def fixed(cls, interval: float, max_attempts: Optional[int] = None) -> "RetryPolicy":
        return cls(interval=interval, max_attempts=max_attempts)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    description: str = "operation",
) -> T:
    """
    Run `fn` until it succeeds or the policy is exhausted.

    Only exceptions in `retry_on` are retried; the last one is re-raised once
    `policy.max_attempts` is reached.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as e:
            if not policy.allows(attempt + 1):
                logger.warning(f"{description} failed after {attempt} attempts: {e}")
                raise
            wait = policy.delay(attempt)
            logger.debug(f"{description} attempt {attempt} failed ({e}), retrying in {wait:.1f}s")
            attempt += 1
            await trio.sleep(wait)


def retry_sync(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Blocking counterpart of retry_async."""
    attempt = 1
    while True:
        try:
            return fn()
        except retry_on as e:
            if not policy.allows(attempt + 1):
                logger.warning(f"{description} failed after {attempt} attempts: {e}")
                raise
            wait = policy.delay(attempt)
            logger.debug(f"{description} attempt {attempt} failed ({e}), retrying in {wait:.2f}s")
            attempt += 1
            sleep(wait)
