"""Timeout enforcement for step attempts.

``asyncio.timeout`` cancels the wrapped coroutine when the deadline elapses;
the cancellation reaches the Thing-runner call, which is how a runaway
script gets stopped. The elapsed deadline surfaces as ``StepTimeoutError``
(retryable) so the retry loop counts it as a failed attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from runspine.core.errors import StepTimeoutError

T = TypeVar("T")


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float | None,
    step_id: str,
) -> T:
    """Await ``awaitable``, bounded by ``timeout_seconds`` when it is positive.

    Raises:
        StepTimeoutError: If the attempt exceeds its deadline
    """
    if timeout_seconds is None or timeout_seconds <= 0:
        return await awaitable

    try:
        async with asyncio.timeout(timeout_seconds):
            return await awaitable
    except TimeoutError:
        raise StepTimeoutError(step_id, timeout_seconds) from None


__all__ = ["run_with_timeout"]
