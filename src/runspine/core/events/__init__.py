"""Event bus for cross-component notifications.

Why This Package Exists
-----------------------
Triggers, the executor and the alert engine need to tell each other (and
any observer) when something happens -- a trigger fired, a step finished,
an alert was acknowledged. Importing each other directly would couple the
engines; the ``EventBus`` protocol decouples producers from consumers.

Usage::

    from runspine.core.events import Event
    from runspine.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus()

    async def handler(event: Event):
        print(event.payload["execution_id"])

    await bus.subscribe("execution.*", handler)
    await bus.publish(Event(event_type="execution.completed", source="executor"))

Event types
-----------
trigger.fired               TriggerService accepted a firing
execution.started           RunbookExecutor created an execution
execution.step_completed    A step reached a terminal state
execution.completed         An execution reached a terminal state
alert.fired                 AlertEngine created an alert
alert.acknowledged          An alert was acknowledged
alert.resolved              An alert was resolved
alert.suppressed            A firing was suppressed by cooldown
alert.notification          Notification action payload
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
]


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass
class Event:
    """Event payload for cross-component communication.

    Attributes:
        event_type: Dot-separated type (e.g., ``execution.completed``)
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        correlation_id: Optional ID linking related events (execution_id)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (supports wildcards).

        Examples:
            - ``execution.*`` matches ``execution.started``
            - ``*`` matches everything
            - ``alert.fired`` matches exactly ``alert.fired``
        """
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ".")
        return self.event_type == pattern


EventHandler = Callable[[Event], Awaitable[None]]


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe with wildcard patterns."""

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern; returns a subscription ID."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        ...

    async def close(self) -> None:
        ...
