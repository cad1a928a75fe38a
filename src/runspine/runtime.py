"""
Composition root.

``Runtime`` builds every component from one ``RunspineSettings`` and starts
and stops them together. The HTTP app and the CLI both go through it; tests
build one with in-memory collaborators and a fake clock.

    store ─────────┬──────────────┬──────────────┐
    event bus ─────┤              │              │
                RunbookExecutor ◄─ TriggerService ◄─ ActionDispatcher (run_runbook)
                                                        ▲
    metrics ──────────────────────────────────── AlertEngine
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from types import TracebackType

import httpx

from runspine.alerts.actions import ActionDispatcher, EmailSender, EventBusNotificationSink, SmtpEmailSender
from runspine.alerts.engine import AlertEngine
from runspine.alerts.metrics import InMemoryMetricsStore
from runspine.core.events import EventBus
from runspine.core.events.memory import InMemoryEventBus
from runspine.core.logging import get_logger
from runspine.core.settings import RunspineSettings, get_settings
from runspine.core.timestamps import utc_now
from runspine.definitions import Definitions, load_definitions_directory
from runspine.execution.retry import SleepFunc, backoff_from_settings
from runspine.execution.runner import HandlerThingRunner, ScriptThingRunner, ThingRunner
from runspine.orchestration.executor import RunbookExecutor
from runspine.storage.memory import InMemoryStore
from runspine.triggers.service import TriggerService

logger = get_logger(__name__)


class Runtime:
    """All runspine components wired together.

    Args:
        settings: Defaults to ``get_settings()``
        store: Runbook / execution / alert persistence
        runner: Thing-runner for steps and script actions
        metrics: Metrics store queried by the alert engine
        event_bus: Pub/sub bus shared by every component
        email_sender: Email action transport (SMTP from settings by default)
        http_client: Client for webhook actions
        clock: Current UTC time for triggers and alerts
        sleep: Awaitable sleep for schedule timers and retry backoff
    """

    def __init__(
        self,
        settings: RunspineSettings | None = None,
        *,
        store: InMemoryStore | None = None,
        runner: ThingRunner | None = None,
        metrics: InMemoryMetricsStore | None = None,
        event_bus: EventBus | None = None,
        email_sender: EmailSender | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.store = store if store is not None else InMemoryStore()
        self.event_bus = event_bus if event_bus is not None else InMemoryEventBus()
        self.metrics = metrics if metrics is not None else InMemoryMetricsStore()
        self.runner = runner if runner is not None else HandlerThingRunner()

        self.executor = RunbookExecutor(
            self.runner,
            self.store,
            self.event_bus,
            backoff=backoff_from_settings(s.retry_base_delay, s.retry_multiplier, s.retry_max_delay),
            concurrency_policy=s.concurrency_policy,
            sleep=sleep,
        )
        self.triggers = TriggerService(
            self.store,
            self.executor,
            self.event_bus,
            file_watch_poll_interval=s.file_watch_poll_interval,
            clock=clock,
            sleep=sleep,
        )
        self.dispatcher = ActionDispatcher(
            notification_sink=EventBusNotificationSink(self.event_bus),
            email_sender=email_sender
            or SmtpEmailSender(
                s.smtp_host,
                s.smtp_from,
                smtp_port=s.smtp_port,
                smtp_user=s.smtp_user,
                smtp_password=s.smtp_password,
                use_tls=s.smtp_use_tls,
            ),
            http_client=http_client,
            fire_runbook=self.triggers.fire,
            thing_runner=self.runner,
            http_timeout=s.http_action_timeout,
        )
        self.alerts = AlertEngine(
            self.store,
            self.metrics,
            self.dispatcher,
            self.event_bus,
            evaluation_interval=s.alert_evaluation_interval,
            clock=clock,
        )
        self._started = False

    @classmethod
    def from_definitions(
        cls,
        definitions: Definitions,
        settings: RunspineSettings | None = None,
        **kwargs,
    ) -> Runtime:
        """Runtime whose store holds ``definitions``.

        Things in the definitions become a ``ScriptThingRunner`` unless a
        runner is passed explicitly.
        """
        if kwargs.get("runner") is None and definitions.things:
            kwargs["runner"] = ScriptThingRunner(definitions.script_specs())
        runtime = cls(settings, **kwargs)
        definitions.apply(runtime.store, runtime.store)
        return runtime

    @classmethod
    def from_settings(cls, settings: RunspineSettings | None = None, **kwargs) -> Runtime:
        """Runtime loaded from ``settings.definitions_dir`` (empty if unset)."""
        settings = settings or get_settings()
        definitions = Definitions()
        if settings.definitions_dir is not None:
            definitions = load_definitions_directory(settings.definitions_dir)
        return cls.from_definitions(definitions, settings, **kwargs)

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.triggers.start()
        await self.alerts.start()
        self._started = True
        logger.info(
            "runtime.started",
            runbooks=len(self.store.list_runbooks()),
            rules=len(self.store.list_rules()),
        )

    async def stop(self) -> None:
        if not self._started:
            return
        await self.alerts.stop()
        await self.triggers.stop()
        await self.executor.shutdown()
        await self.dispatcher.close()
        await self.event_bus.close()
        self._started = False
        logger.info("runtime.stopped")

    async def __aenter__(self) -> Runtime:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


__all__ = ["Runtime"]
