"""Retry policies and backoff strategies for step attempts.

A step with ``retry.enable_retry`` and ``retry.max_retries = N`` gets at
most ``N + 1`` attempts. The delay between attempts comes from an explicit
``BackoffStrategy`` so tests can swap in ``NoDelay`` and production can
tune the exponential defaults (5s base, x2, capped at 300s).

Example:
    >>> from runspine.execution.retry import ExponentialBackoff, RetryPolicy
    >>>
    >>> policy = RetryPolicy(max_attempts=4, backoff=ExponentialBackoff())
    >>> [policy.backoff.next_delay(n) for n in range(3)]
    [5.0, 10.0, 20.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from runspine.core.errors import is_retryable
from runspine.core.models.runbook import RunbookStep
from runspine.core.timestamps import utc_now

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class BackoffStrategy(ABC):
    """Delay schedule between attempts."""

    @abstractmethod
    def next_delay(self, retry_number: int) -> float:
        """Calculate delay before a retry.

        Args:
            retry_number: Zero-based retry number (0 = delay before attempt 2)

        Returns:
            Delay in seconds
        """
        ...


@dataclass
class ExponentialBackoff(BackoffStrategy):
    """Delay = min(base_delay * multiplier ** retry_number, max_delay) [+ jitter]

    Attributes:
        base_delay: Initial delay in seconds
        multiplier: Exponential multiplier
        max_delay: Maximum delay cap in seconds
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 5.0
    multiplier: float = 2.0
    max_delay: float = 300.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, retry_number: int) -> float:
        delay = min(self.base_delay * (self.multiplier**retry_number), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        return delay


@dataclass
class LinearBackoff(BackoffStrategy):
    """Delay = min(base_delay + increment * retry_number, max_delay)"""

    base_delay: float = 5.0
    increment: float = 5.0
    max_delay: float = 300.0

    def next_delay(self, retry_number: int) -> float:
        return min(self.base_delay + (self.increment * retry_number), self.max_delay)


@dataclass
class ConstantBackoff(BackoffStrategy):
    """Constant delay between attempts."""

    delay: float = 5.0

    def next_delay(self, retry_number: int) -> float:
        return self.delay


@dataclass
class NoDelay(BackoffStrategy):
    """Retry immediately."""

    def next_delay(self, retry_number: int) -> float:
        return 0.0


@dataclass
class RetryPolicy:
    """Attempt budget plus backoff for one step."""

    max_attempts: int = 1
    backoff: BackoffStrategy = field(default_factory=ExponentialBackoff)

    @classmethod
    def for_step(cls, step: RunbookStep, backoff: BackoffStrategy | None = None) -> RetryPolicy:
        return cls(
            max_attempts=step.max_attempts,
            backoff=backoff if backoff is not None else ExponentialBackoff(),
        )

    def should_retry(self, attempts_made: int, error: BaseException | None = None) -> bool:
        """True when another attempt is allowed after ``attempts_made`` failures.

        Errors flagged non-retryable end the loop regardless of budget.
        """
        if attempts_made >= self.max_attempts:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True

    def delay_after(self, attempts_made: int) -> float:
        """Delay before attempt ``attempts_made + 1``."""
        return self.backoff.next_delay(max(0, attempts_made - 1))


@dataclass
class RetryContext:
    """Tracks attempts of one step.

    Example:
        >>> ctx = RetryContext(RetryPolicy(max_attempts=3, backoff=NoDelay()))
        >>> result = await ctx.run_async(runner.execute, "thing-1", "default", {})
    """

    policy: RetryPolicy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    sleep: SleepFunc = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utc_now, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)

    def begin_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    def record_failure(self, error: BaseException) -> None:
        self.errors.append((self.attempt, error, utc_now()))
        self.last_error = error

    def should_retry(self) -> bool:
        return self.policy.should_retry(self.attempt, self.last_error)

    def next_delay(self) -> float:
        return self.policy.delay_after(self.attempt)

    async def wait_before_retry(self) -> float:
        """Sleep for the backoff delay (notifying ``on_retry`` first)."""
        delay = self.next_delay()
        if self.on_retry and self.last_error is not None:
            self.on_retry(self.attempt, self.last_error, delay)
        if delay > 0:
            await self.sleep(delay)
        return delay

    @property
    def attempts(self) -> int:
        return self.attempt

    async def run_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute an async function with retry logic.

        Raises:
            The last exception if the attempt budget is exhausted
        """
        while True:
            self.begin_attempt()
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.record_failure(e)
                if not self.should_retry():
                    raise
                await self.wait_before_retry()


def backoff_from_settings(base_delay: float, multiplier: float, max_delay: float) -> BackoffStrategy:
    """Default strategy for the runtime; zero base delay means retry immediately."""
    if base_delay <= 0:
        return NoDelay()
    return ExponentialBackoff(base_delay=base_delay, multiplier=multiplier, max_delay=max_delay)


__all__ = [
    "BackoffStrategy",
    "ExponentialBackoff",
    "LinearBackoff",
    "ConstantBackoff",
    "NoDelay",
    "RetryPolicy",
    "RetryContext",
    "backoff_from_settings",
]
