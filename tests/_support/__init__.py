"""
Test support utilities for runspine tests.

Helpers that are not fixtures: a controllable clock, sleeps for timer
and retry loops, Thing handler factories and a step builder.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from runspine.core.models import RunbookStep, StepCondition, StepRetry
from runspine.execution.runner import ThingResult

T0 = datetime(2024, 1, 1, 10, 30, tzinfo=UTC)


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Callable clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | float) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self.now += delta
        return self.now


class ManualSleep:
    """Awaitable sleep that only returns when the test calls ``wake()``.

    Waking advances the paired clock by the requested delay, so timer loops
    observe time moving exactly as far as they asked to sleep.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((delay, future))
        await future

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def settle(self, rounds: int = 200) -> None:
        """Let other tasks run until one is parked in this sleep."""
        for _ in range(rounds):
            if self._waiters:
                return
            await asyncio.sleep(0)

    async def wake(self) -> float:
        await self.settle()
        delay, future = self._waiters.pop(0)
        self.clock.advance(delay)
        future.set_result(None)
        await asyncio.sleep(0)
        await self.settle()
        return delay


class RecordingSleep:
    """Returns immediately and records every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# =============================================================================
# Thing handlers
# =============================================================================


def succeed(output: str = "ok"):
    async def handler(profile_id: str, parameters: Mapping[str, str]) -> ThingResult:
        return ThingResult.ok(output)

    return handler


def fail(error: str = "boom", exit_code: int = 1):
    async def handler(profile_id: str, parameters: Mapping[str, str]) -> ThingResult:
        return ThingResult.fail(error, exit_code=exit_code)

    return handler


def block(started: asyncio.Event, release: asyncio.Event | None = None):
    """Signals ``started`` and waits on ``release`` (forever when None)."""

    async def handler(profile_id: str, parameters: Mapping[str, str]) -> ThingResult:
        started.set()
        await (release or asyncio.Event()).wait()
        return ThingResult.ok("released")

    return handler


class CountingHandler:
    """Fails the first ``failures`` calls, then succeeds; records parameters."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def __call__(self, profile_id: str, parameters: Mapping[str, str]) -> ThingResult:
        self.calls.append((profile_id, dict(parameters)))
        if len(self.calls) <= self.failures:
            return ThingResult.fail(f"attempt {len(self.calls)} failed")
        return ThingResult.ok(f"attempt {len(self.calls)} ok")


# =============================================================================
# Builders
# =============================================================================


def make_step(
    step_id: str,
    thing_id: str,
    *,
    depends_on: tuple[str, ...] = (),
    condition: StepCondition = StepCondition.ON_SUCCESS,
    max_retries: int | None = None,
    timeout_seconds: float | None = None,
    parameters: dict[str, str] | None = None,
) -> RunbookStep:
    return RunbookStep(
        step_id=step_id,
        name=step_id.title(),
        thing_id=thing_id,
        parameters=parameters or {},
        condition=condition,
        depends_on=frozenset(depends_on),
        retry=StepRetry(enable_retry=True, max_retries=max_retries) if max_retries is not None else None,
        timeout_seconds=timeout_seconds,
    )


# =============================================================================
# Alert collaborators
# =============================================================================


class RecordingSink:
    """NotificationSink that keeps every (rule id, alert id) it was handed."""

    def __init__(self) -> None:
        self.notified: list[tuple[str, str]] = []

    async def notify(self, rule, alert) -> None:
        self.notified.append((rule.id, alert.id))


class RecordingEmailSender:
    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[tuple[list[str], str, str]] = []
        self.error = error

    async def send(self, recipients, subject: str, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((list(recipients), subject, body))
