"""
TriggerService - turns schedules, webhooks, file changes and manual requests
into runbook executions.

Manifesto:
    Every way a runbook can start funnels into one ``fire()`` call, so
    enable checks, concurrency errors, events and logging behave the same
    for a cron tick, a signed webhook and a button press.

Architecture:
    ::

        register(runbook)            (raises on bad cron / missing path / bad graph)
            │
            ├── ScheduleTrigger  → timer task: sleep until next cron instant,
            │                      skip silently if disabled, fire, repeat
            ├── FileWatchTrigger → FileWatcher poll task (+ trailing debounce)
            ├── WebhookTrigger   → nothing armed; handle_webhook verifies + fires
            └── ManualTrigger    → nothing armed
                                        │
        fire(runbook_id) ◄──────────────┘
            │  per-runbook asyncio.Lock (serialized with unregister)
            │  RunbookNotFound / DisabledRunbook / ExecutionInProgress
            ▼
        RunbookExecutor.submit → TriggerResult + "trigger.fired" event

    Source states: Idle → Armed → Fired → Armed ... → Idle (unregister)

Tags:
    triggers, cron, webhook, file-watch, scheduling, runspine
"""

from __future__ import annotations

import asyncio
import ipaddress
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from runspine.core.errors import (
    AuthError,
    DisabledRunbookError,
    InvalidDefinitionError,
    RunbookNotFoundError,
    RunspineError,
)
from runspine.core.events import Event, EventBus
from runspine.core.logging import get_logger
from runspine.core.models import (
    FileWatchTrigger,
    ManualTrigger,
    Runbook,
    ScheduleTrigger,
    TriggerResult,
    TriggerType,
    WebhookTrigger,
)
from runspine.core.timestamps import to_iso8601, utc_now
from runspine.orchestration.executor import RunbookExecutor
from runspine.orchestration.graph import validate_steps
from runspine.storage.protocols import RunbookStore
from runspine.triggers.cron import CronSchedule
from runspine.triggers.file_watch import FileEvent, FileWatcher
from runspine.triggers.webhook import verify_request

logger = get_logger(__name__)

EVENT_SOURCE = "runspine.triggers"

Clock = Callable[[], datetime]
SleepFunc = Callable[[float], Awaitable[None]]


class SourceState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"


@dataclass(frozen=True)
class FileWatcherInfo:
    runbook_id: str
    runbook_name: str
    path: str
    pattern: str
    is_active: bool


@dataclass
class TriggerState:
    """Inspection view of one registered runbook's trigger source."""

    runbook_id: str
    trigger_type: TriggerType
    state: SourceState
    next_run: datetime | None = None
    last_fired_at: datetime | None = None
    last_result: TriggerResult | None = None
    fire_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "runbook_id": self.runbook_id,
            "trigger_type": self.trigger_type.value,
            "state": self.state.value,
            "next_run": to_iso8601(self.next_run),
            "last_fired_at": to_iso8601(self.last_fired_at),
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "fire_count": self.fire_count,
        }


@dataclass
class _Registration:
    runbook_id: str
    runbook_name: str
    trigger_type: TriggerType
    state: SourceState = SourceState.IDLE
    schedule: CronSchedule | None = None
    next_run: datetime | None = None
    timer: asyncio.Task[None] | None = None
    watcher: FileWatcher | None = None
    watch_trigger: FileWatchTrigger | None = None
    last_fired_at: datetime | None = None
    last_result: TriggerResult | None = None
    fire_count: int = 0

    @property
    def is_armed_source(self) -> bool:
        return self.trigger_type in (TriggerType.SCHEDULE, TriggerType.FILE_WATCH)


class TriggerService:
    """Owns every background trigger source.

    Args:
        store: Runbook definitions (re-read on every fire)
        executor: Receives ``submit`` calls
        event_bus: Optional bus for ``trigger.fired`` events
        file_watch_poll_interval: Seconds between file-watch polls
        clock: Current UTC time (injectable for tests)
        sleep: Awaitable sleep used by schedule timers (injectable for tests)
    """

    def __init__(
        self,
        store: RunbookStore,
        executor: RunbookExecutor,
        event_bus: EventBus | None = None,
        file_watch_poll_interval: float = 1.0,
        clock: Clock = utc_now,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._store = store
        self._executor = executor
        self._event_bus = event_bus
        self._poll_interval = file_watch_poll_interval
        self._clock = clock
        self._sleep = sleep
        self._registrations: dict[str, _Registration] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Register every stored runbook; invalid ones are logged and left idle."""
        if self._running:
            return
        self._running = True

        registered = 0
        for runbook in self._store.list_runbooks():
            try:
                await self.register(runbook)
                registered += 1
            except RunspineError as e:
                logger.error(
                    "trigger.register_failed",
                    runbook_id=runbook.id,
                    error_code=e.code,
                    error=e.message,
                )

        logger.info("trigger_service.started", runbooks=registered)

    async def stop(self) -> None:
        for runbook_id in list(self._registrations):
            await self.unregister(runbook_id)
        self._running = False
        logger.info("trigger_service.stopped")

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(self, runbook: Runbook) -> None:
        """Validate and arm ``runbook``'s trigger, replacing any earlier registration.

        Raises:
            InvalidCronExpressionError: unparsable cron or unknown timezone
            PathNotFoundError: file-watch directory does not exist
            InvalidDefinitionError: malformed webhook CIDR range
            CyclicGraphError: invalid step graph
        """
        async with self._lock_for(runbook.id):
            reg = self._build_registration(runbook)
            await self._disarm(runbook.id)
            if reg.schedule is not None:
                reg.timer = asyncio.create_task(
                    self._schedule_loop(reg), name=f"runspine-schedule-{runbook.id}"
                )
            if reg.watcher is not None:
                reg.watcher.start()
            self._registrations[runbook.id] = reg

        logger.info(
            "trigger.registered",
            runbook_id=runbook.id,
            trigger_type=reg.trigger_type.value,
            next_run=to_iso8601(reg.next_run),
            enabled=runbook.is_enabled,
        )

    def _build_registration(self, runbook: Runbook) -> _Registration:
        """Validate ``runbook`` into an unstarted registration."""
        validate_steps(runbook.steps)

        reg = _Registration(
            runbook_id=runbook.id,
            runbook_name=runbook.name,
            trigger_type=runbook.trigger.trigger_type,
        )

        match runbook.trigger:
            case ScheduleTrigger(cron_expression=expr, timezone_id=tz):
                reg.schedule = CronSchedule.parse(expr, tz)
                reg.next_run = reg.schedule.next_after(self._clock())
                reg.state = SourceState.ARMED
            case FileWatchTrigger() as watch:
                reg.watch_trigger = watch
                reg.watcher = FileWatcher(
                    path=watch.path,
                    pattern=watch.pattern,
                    include_subdirectories=watch.include_subdirectories,
                    debounce=watch.debounce,
                    poll_interval=self._poll_interval,
                    on_event=lambda event, rid=runbook.id: self._on_file_event(rid, event),
                )
                reg.state = SourceState.ARMED
            case WebhookTrigger(allowed_ip_range=cidr):
                if cidr:
                    try:
                        ipaddress.ip_network(cidr, strict=False)
                    except ValueError as e:
                        raise InvalidDefinitionError(
                            f"Invalid allowed_ip_range '{cidr}'", runbook_id=runbook.id
                        ) from e
            case ManualTrigger():
                pass
            case _:
                raise InvalidDefinitionError(
                    f"Unsupported trigger: {type(runbook.trigger).__name__}",
                    runbook_id=runbook.id,
                )
        return reg

    async def unregister(self, runbook_id: str) -> bool:
        """Disarm a runbook's trigger; returns False if it was not registered."""
        async with self._lock_for(runbook_id):
            removed = await self._disarm(runbook_id)
        self._release_lock(runbook_id)
        if removed:
            logger.info("trigger.unregistered", runbook_id=runbook_id)
        return removed

    async def reload(self, runbook_id: str) -> None:
        """Re-arm from the currently stored definition (after a full update)."""
        runbook = self._store.get_runbook(runbook_id)
        if runbook is None:
            await self.unregister(runbook_id)
            return
        await self.register(runbook)

    async def _disarm(self, runbook_id: str) -> bool:
        reg = self._registrations.pop(runbook_id, None)
        if reg is None:
            return False
        if reg.timer is not None and reg.timer is not asyncio.current_task():
            reg.timer.cancel()
            try:
                await reg.timer
            except asyncio.CancelledError:
                pass
        if reg.watcher is not None:
            await reg.watcher.stop()
        reg.state = SourceState.IDLE
        return True

    def _lock_for(self, runbook_id: str) -> asyncio.Lock:
        lock = self._locks.get(runbook_id)
        if lock is None:
            lock = self._locks[runbook_id] = asyncio.Lock()
        return lock

    def _release_lock(self, runbook_id: str) -> None:
        lock = self._locks.get(runbook_id)
        if lock is not None and not lock.locked():
            del self._locks[runbook_id]

    # =========================================================================
    # Firing
    # =========================================================================

    async def fire(
        self,
        runbook_id: str,
        trigger_type: TriggerType = TriggerType.MANUAL,
        trigger_info: str | None = None,
    ) -> TriggerResult:
        """Start an execution of ``runbook_id``; errors are reported, not raised."""
        async with self._lock_for(runbook_id):
            result = await self._fire_locked(runbook_id, trigger_type, trigger_info)

        reg = self._registrations.get(runbook_id)
        if reg is not None:
            reg.last_result = result
            if result.success:
                reg.fire_count += 1
                reg.last_fired_at = self._clock()
            reg.state = SourceState.ARMED if reg.is_armed_source else SourceState.IDLE
        return result

    async def _fire_locked(
        self,
        runbook_id: str,
        trigger_type: TriggerType,
        trigger_info: str | None,
    ) -> TriggerResult:
        runbook = self._store.get_runbook(runbook_id)
        try:
            if runbook is None:
                raise RunbookNotFoundError(runbook_id)
            if not runbook.is_enabled:
                raise DisabledRunbookError(runbook_id)
            execution_id = await self._executor.submit(runbook, trigger_type, trigger_info)
        except RunspineError as e:
            logger.warning(
                "trigger.rejected",
                runbook_id=runbook_id,
                trigger_type=trigger_type.value,
                error_code=e.code,
                error=e.message,
            )
            return TriggerResult.fail(e.message, e.code)
        except Exception as e:
            logger.exception("trigger.fire_failed", runbook_id=runbook_id, error=str(e))
            return TriggerResult.fail(str(e), "INTERNAL")

        reg = self._registrations.get(runbook_id)
        if reg is not None:
            reg.state = SourceState.FIRED

        logger.info(
            "trigger.fired",
            runbook_id=runbook_id,
            trigger_type=trigger_type.value,
            execution_id=execution_id,
            trigger_info=trigger_info,
        )
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event(
                    event_type="trigger.fired",
                    source=EVENT_SOURCE,
                    payload={
                        "runbook_id": runbook.id,
                        "runbook_name": runbook.name,
                        "trigger_type": trigger_type.value,
                        "execution_id": execution_id,
                        "trigger_info": trigger_info,
                        "fired_at": self._clock().isoformat(),
                    },
                    correlation_id=execution_id,
                )
            )
        return TriggerResult.ok(execution_id)

    async def handle_webhook(
        self,
        runbook_id: str,
        body: bytes,
        signature: str | None,
        source_ip: str | None = None,
    ) -> TriggerResult:
        """Verify a webhook call and fire the runbook.

        Source and signature are checked before the enabled flag so an
        unauthenticated caller learns nothing about the runbook.
        """
        runbook = self._store.get_runbook(runbook_id)
        if runbook is None or not isinstance(runbook.trigger, WebhookTrigger):
            logger.warning("webhook.unknown_runbook", runbook_id=runbook_id)
            return TriggerResult.fail(
                f"No webhook-triggered runbook: {runbook_id}", RunbookNotFoundError.code
            )

        try:
            verify_request(
                runbook.trigger.secret,
                body,
                signature,
                source_ip=source_ip,
                allowed_ip_range=runbook.trigger.allowed_ip_range,
            )
        except AuthError as e:
            logger.warning(
                "webhook.rejected",
                runbook_id=runbook_id,
                source_ip=source_ip,
                error_code=e.code,
            )
            return TriggerResult.fail(e.message, e.code)

        return await self.fire(runbook_id, TriggerType.WEBHOOK, f"Payload size: {len(body)}")

    # =========================================================================
    # Sources
    # =========================================================================

    async def _schedule_loop(self, reg: _Registration) -> None:
        assert reg.schedule is not None
        while True:
            now = self._clock()
            if reg.next_run is None:
                reg.next_run = reg.schedule.next_after(now)
            target = reg.next_run

            delay = max((target - now).total_seconds(), 0.0)
            logger.debug("schedule.sleeping", runbook_id=reg.runbook_id, until=target.isoformat())
            await self._sleep(delay)

            runbook = self._store.get_runbook(reg.runbook_id)
            if runbook is None:
                logger.info("schedule.runbook_removed", runbook_id=reg.runbook_id)
            elif not runbook.is_enabled:
                logger.debug("schedule.skipped_disabled", runbook_id=reg.runbook_id)
            else:
                await self.fire(
                    reg.runbook_id,
                    TriggerType.SCHEDULE,
                    f"Scheduled run at {target.isoformat()}",
                )

            # strictly after the instant just handled, even if the clock lags
            reg.next_run = reg.schedule.next_after(max(self._clock(), target))

    async def _on_file_event(self, runbook_id: str, event: FileEvent) -> None:
        result = await self.fire(runbook_id, TriggerType.FILE_WATCH, event.describe())
        if not result.success:
            logger.warning(
                "file_watch.fire_failed",
                runbook_id=runbook_id,
                path=event.path,
                error_code=result.error_code,
            )

    # =========================================================================
    # Inspection
    # =========================================================================

    def next_scheduled_run(self, runbook_id: str) -> datetime | None:
        reg = self._registrations.get(runbook_id)
        return reg.next_run if reg is not None else None

    def active_file_watchers(self) -> list[FileWatcherInfo]:
        infos: list[FileWatcherInfo] = []
        for reg in self._registrations.values():
            if reg.watcher is None or reg.watch_trigger is None:
                continue
            infos.append(
                FileWatcherInfo(
                    runbook_id=reg.runbook_id,
                    runbook_name=reg.runbook_name,
                    path=reg.watch_trigger.path,
                    pattern=reg.watch_trigger.pattern,
                    is_active=reg.watcher.is_active,
                )
            )
        return infos

    def trigger_state(self, runbook_id: str) -> TriggerState | None:
        reg = self._registrations.get(runbook_id)
        if reg is None:
            return None
        return TriggerState(
            runbook_id=reg.runbook_id,
            trigger_type=reg.trigger_type,
            state=reg.state,
            next_run=reg.next_run,
            last_fired_at=reg.last_fired_at,
            last_result=reg.last_result,
            fire_count=reg.fire_count,
        )

    def registered_runbooks(self) -> list[str]:
        return list(self._registrations)


__all__ = [
    "SourceState",
    "FileWatcherInfo",
    "TriggerState",
    "TriggerService",
]
