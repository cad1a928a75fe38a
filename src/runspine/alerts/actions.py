"""
Alert action dispatch.

Actions of a rule run in order and each one is failure-isolated: an SMTP
outage never stops the webhook, and a failed webhook never stops the
remediation runbook. Every action yields an ``ActionResult``.

    notification  → NotificationSink (default: "alert.notification" event)
    email         → EmailSender (default: SMTP)      config: to, subject?
    webhook       → HTTP POST via httpx              config: url
    run_runbook   → TriggerService.fire              config: runbook_id
    script        → ThingRunner.execute              config: thing_id, profile_id?
"""

from __future__ import annotations

import asyncio
import smtplib
from collections.abc import Awaitable, Callable, Sequence
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol, runtime_checkable

import httpx

from runspine.core.errors import TransientError
from runspine.core.events import Event, EventBus
from runspine.core.logging import get_logger
from runspine.core.models import (
    ActionResult,
    Alert,
    AlertAction,
    AlertActionType,
    AlertRule,
    TriggerResult,
    TriggerType,
)
from runspine.execution.runner import ThingRunner

logger = get_logger(__name__)

EVENT_SOURCE = "runspine.alerts"

RunbookFire = Callable[[str, TriggerType, str | None], Awaitable[TriggerResult]]


class ActionConfigError(ValueError):
    """An action is missing a required config key."""


# ── Collaborators ────────────────────────────────────────────────────────


@runtime_checkable
class EmailSender(Protocol):
    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(self, rule: AlertRule, alert: Alert) -> None: ...


class SmtpEmailSender:
    """Email sender using SMTP (blocking client run in a worker thread)."""

    def __init__(
        self,
        smtp_host: str,
        from_address: str,
        *,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = True,
    ):
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._from_address = from_address
        self._use_tls = use_tls

    def build_message(self, recipients: Sequence[str], subject: str, body: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))
        return msg.as_string()

    def _send_sync(self, recipients: Sequence[str], subject: str, body: str) -> None:
        server = smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=30)
        try:
            if self._use_tls:
                server.starttls()
            if self._smtp_user and self._smtp_password:
                server.login(self._smtp_user, self._smtp_password)
            server.sendmail(self._from_address, list(recipients), self.build_message(recipients, subject, body))
        finally:
            server.quit()

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        try:
            await asyncio.to_thread(self._send_sync, recipients, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            raise TransientError(f"SMTP delivery failed: {e}", cause=e) from e


class EventBusNotificationSink:
    """Publishes ``alert.notification`` events for in-app observers."""

    def __init__(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus

    async def notify(self, rule: AlertRule, alert: Alert) -> None:
        await self._event_bus.publish(
            Event(
                event_type="alert.notification",
                source=EVENT_SOURCE,
                payload={"alert": alert.to_dict(), "rule_id": rule.id, "rule_name": rule.name},
                correlation_id=alert.id,
            )
        )


# ── Dispatcher ───────────────────────────────────────────────────────────


def alert_context(rule: AlertRule, alert: Alert) -> dict[str, Any]:
    """JSON body posted by webhook actions."""
    return {
        "alert": alert.to_dict(),
        "rule": {
            "id": rule.id,
            "name": rule.name,
            "metric_name": rule.metric_name,
            "condition": rule.condition.value,
            "threshold": rule.threshold,
            "severity": rule.severity.value,
            "tags": dict(rule.tags),
        },
    }


def email_body(rule: AlertRule, alert: Alert) -> str:
    return (
        f"{alert.severity.value.upper()}: {rule.name}\n"
        f"\n"
        f"Metric: {rule.metric_name}\n"
        f"Value: {alert.current_value:.2f} (threshold {alert.threshold})\n"
        f"Fired: {alert.fired_at.isoformat()}\n"
        f"\n"
        f"{alert.message}\n"
    )


class ActionDispatcher:
    """Runs a rule's actions for one alert.

    Collaborators left as None make their action type fail with a clear
    ``ActionResult`` instead of raising.
    """

    def __init__(
        self,
        *,
        notification_sink: NotificationSink | None = None,
        email_sender: EmailSender | None = None,
        http_client: httpx.AsyncClient | None = None,
        fire_runbook: RunbookFire | None = None,
        thing_runner: ThingRunner | None = None,
        http_timeout: float = 10.0,
    ):
        self._notification_sink = notification_sink
        self._email_sender = email_sender
        self._http_client = http_client
        self._owns_client = False
        self._fire_runbook = fire_runbook
        self._thing_runner = thing_runner
        self._http_timeout = http_timeout

    def bind_runbook_fire(self, fire_runbook: RunbookFire) -> None:
        """Late-bind the RunRunbook callback (the trigger service is built later)."""
        self._fire_runbook = fire_runbook

    async def dispatch(self, rule: AlertRule, alert: Alert) -> list[ActionResult]:
        results: list[ActionResult] = []
        for action in rule.actions:
            try:
                await self._dispatch_one(action, rule, alert)
                result = ActionResult.ok(action.type)
            except Exception as e:
                logger.error(
                    "alert.action_failed",
                    alert_id=alert.id,
                    rule_id=rule.id,
                    action_type=action.type.value,
                    error=str(e),
                )
                result = ActionResult.fail(action.type, str(e))
            else:
                logger.debug("alert.action_dispatched", alert_id=alert.id, action_type=action.type.value)
            results.append(result)
        return results

    async def _dispatch_one(self, action: AlertAction, rule: AlertRule, alert: Alert) -> None:
        match action.type:
            case AlertActionType.NOTIFICATION:
                await self._notify(rule, alert)
            case AlertActionType.EMAIL:
                await self._email(action, rule, alert)
            case AlertActionType.WEBHOOK:
                await self._webhook(action, rule, alert)
            case AlertActionType.RUN_RUNBOOK:
                await self._run_runbook(action, rule, alert)
            case AlertActionType.SCRIPT:
                await self._script(action, alert)
            case _:
                raise ActionConfigError(f"Unsupported action type: {action.type}")

    async def _notify(self, rule: AlertRule, alert: Alert) -> None:
        if self._notification_sink is None:
            raise ActionConfigError("No notification sink configured")
        await self._notification_sink.notify(rule, alert)

    async def _email(self, action: AlertAction, rule: AlertRule, alert: Alert) -> None:
        if self._email_sender is None:
            raise ActionConfigError("No email sender configured")
        recipients = [r.strip() for r in _require(action, "to").split(",") if r.strip()]
        if not recipients:
            raise ActionConfigError("Email action has no recipients")
        subject = action.config.get("subject") or f"[{alert.severity.value.upper()}] {rule.name}"
        await self._email_sender.send(recipients, subject, email_body(rule, alert))

    async def _webhook(self, action: AlertAction, rule: AlertRule, alert: Alert) -> None:
        url = _require(action, "url")
        client = self._client()
        try:
            response = await client.post(url, json=alert_context(rule, alert), timeout=self._http_timeout)
            response.raise_for_status()
        except httpx.TransportError as e:
            raise TransientError(f"Webhook {url} unreachable: {e}", cause=e) from e

    async def _run_runbook(self, action: AlertAction, rule: AlertRule, alert: Alert) -> None:
        if self._fire_runbook is None:
            raise ActionConfigError("No runbook trigger configured")
        runbook_id = _require(action, "runbook_id")
        result = await self._fire_runbook(
            runbook_id,
            TriggerType.MANUAL,
            f"Alert {alert.id} ({rule.name})",
        )
        if not result.success:
            raise RuntimeError(result.error_message or f"Runbook {runbook_id} did not start")
        logger.info(
            "alert.runbook_started",
            alert_id=alert.id,
            runbook_id=runbook_id,
            execution_id=result.execution_id,
        )

    async def _script(self, action: AlertAction, alert: Alert) -> None:
        if self._thing_runner is None:
            raise ActionConfigError("No thing runner configured")
        thing_id = _require(action, "thing_id")
        outcome = await self._thing_runner.execute(
            thing_id,
            action.config.get("profile_id", "default"),
            {"alert_id": alert.id, "rule_id": alert.rule_id, "value": f"{alert.current_value}"},
        )
        if not outcome.success:
            raise RuntimeError(outcome.error or f"Script {thing_id} failed")

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._http_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False


def _require(action: AlertAction, key: str) -> str:
    value = action.config.get(key)
    if not value:
        raise ActionConfigError(f"{action.type.value} action requires '{key}'")
    return value


__all__ = [
    "ActionConfigError",
    "ActionDispatcher",
    "EmailSender",
    "EventBusNotificationSink",
    "NotificationSink",
    "RunbookFire",
    "SmtpEmailSender",
    "alert_context",
    "email_body",
]
