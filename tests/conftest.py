"""
Shared pytest fixtures for runspine tests.

This module provides:
- In-memory store, event bus and metrics store
- A controllable clock and sleeps for timer and retry tests
- A handler-based Thing-runner and an executor wired to it
- A runbook builder that saves to the store

Helpers that are not fixtures live in ``tests._support``.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from runspine.alerts.metrics import InMemoryMetricsStore
from runspine.core.events import Event
from runspine.core.events.memory import InMemoryEventBus
from runspine.core.models import ManualTrigger, Runbook, RunbookStep
from runspine.execution.retry import NoDelay
from runspine.execution.runner import HandlerThingRunner
from runspine.orchestration.executor import RunbookExecutor
from runspine.storage.memory import InMemoryStore
from tests._support import FakeClock, ManualSleep, RecordingSleep

# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manual_sleep(clock: FakeClock) -> ManualSleep:
    return ManualSleep(clock)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def metrics() -> InMemoryMetricsStore:
    return InMemoryMetricsStore(retention=None)


@pytest.fixture
def runner() -> HandlerThingRunner:
    return HandlerThingRunner()


@pytest.fixture
def executor(runner, store, event_bus, recording_sleep) -> RunbookExecutor:
    return RunbookExecutor(runner, store, event_bus, backoff=NoDelay(), sleep=recording_sleep)


@pytest_asyncio.fixture
async def published(event_bus) -> list[Event]:
    """Every event published on the shared bus, in order."""
    events: list[Event] = []

    async def collect(event: Event) -> None:
        events.append(event)

    await event_bus.subscribe("*", collect)
    return events


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def make_runbook(store):
    """Build a runbook from steps and save it."""

    def build(
        *steps: RunbookStep,
        runbook_id: str = "rb-1",
        trigger=None,
        enabled: bool = True,
    ) -> Runbook:
        runbook = Runbook(
            id=runbook_id,
            name=f"Runbook {runbook_id}",
            steps=list(steps),
            trigger=trigger or ManualTrigger(),
            is_enabled=enabled,
        )
        store.save_runbook(runbook)
        return runbook

    return build
