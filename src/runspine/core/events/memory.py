"""
In-memory event bus implementation.

Events are delivered immediately to every matching handler and are not
persisted. Suitable for a single-process runtime and for tests.

Tags:
    runspine, events, in-memory, asyncio, testing
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from runspine.core.events import Event, EventHandler
from runspine.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus.

    Handlers run concurrently; one handler raising never stops delivery to
    the others.

    Example::

        bus = InMemoryEventBus()
        await bus.subscribe("alert.*", on_alert)
        await bus.publish(Event(event_type="alert.fired", source="alerts"))
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def publish(self, event: Event) -> None:
        if self._closed:
            return

        async with self._lock:
            handlers_to_call = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        if not handlers_to_call:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    "event.handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    error=str(e),
                )

        await asyncio.gather(
            *[safe_call(sub_id, handler) for sub_id, handler in handlers_to_call],
            return_exceptions=True,
        )

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching ``event_type`` (``*`` and ``type.*`` allowed)."""
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        async with self._lock:
            self._subscriptions[sub_id] = Subscription(
                id=sub_id,
                pattern=event_type,
                handler=handler,
            )
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        async with self._lock:
            self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        async with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
