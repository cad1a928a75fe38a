"""
AlertEngine - evaluates metric rules and manages the alert lifecycle.

Manifesto:
    A flapping metric must not page anyone twice inside a rule's cooldown.
    The cooldown is anchored on the rule's most recent Resolved transition,
    never on ``fired_at``, so a long incident does not eat its own cooldown.

Architecture:
    ::

        _loop (every evaluation_interval seconds)
            └── evaluate_all()
                    ├── prune samples past retention
                    └── process_rule(rule)            per enabled rule
                            │ evaluate (MetricsSource → reduce_window → condition)
                            ▼
                    ┌───────────── per-rule asyncio.Lock ─────────────┐
                    │ triggered, no active alert                     │
                    │     cooling down → suppressed (alert.suppressed)│
                    │     otherwise    → Alert + ActionDispatcher     │
                    │ not triggered, active alert → resolve           │
                    └─────────────────────────────────────────────────┘

    Rule states: Normal → Firing → Resolved → Normal

Examples:
    >>> engine = AlertEngine(store, metrics, dispatcher, event_bus)
    >>> evaluation = await engine.evaluate_rule("rule_cpu")
    >>> evaluation.is_triggered
    True

Tags:
    alerting, metrics, cooldown, lifecycle, runspine
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from runspine.alerts.actions import ActionDispatcher
from runspine.alerts.metrics import MetricsSource, PrunableMetrics
from runspine.core.conditions import evaluate_condition, format_alert_message, reduce_window
from runspine.core.errors import AlertNotFoundError, AlertRuleNotFoundError
from runspine.core.events import Event, EventBus
from runspine.core.logging import LogContext, get_logger
from runspine.core.models import (
    ActionResult,
    Alert,
    AlertEvaluation,
    AlertRule,
    AlertStatus,
)
from runspine.core.timestamps import new_id, utc_now
from runspine.storage.protocols import AlertStore

logger = get_logger(__name__)

EVENT_SOURCE = "runspine.alerts"

Clock = Callable[[], datetime]


class RulePhase(str, Enum):
    NORMAL = "normal"
    FIRING = "firing"


@dataclass
class RuleState:
    """Lifecycle bookkeeping for one rule."""

    rule_id: str
    phase: RulePhase = RulePhase.NORMAL
    active_alert_id: str | None = None
    last_resolved_at: datetime | None = None
    condition_met: bool = False
    suppressed_count: int = 0
    last_evaluated_at: datetime | None = None
    last_value: float | None = None

    def in_cooldown(self, rule: AlertRule, now: datetime) -> bool:
        if self.last_resolved_at is None:
            return False
        return now - self.last_resolved_at < rule.cooldown_period

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "phase": self.phase.value,
            "active_alert_id": self.active_alert_id,
            "last_resolved_at": self.last_resolved_at.isoformat() if self.last_resolved_at else None,
            "condition_met": self.condition_met,
            "suppressed_count": self.suppressed_count,
            "last_value": self.last_value,
        }


class AlertEngine:
    """Periodic rule evaluation with cooldown-aware alert lifecycle.

    Args:
        store: Alert rule and alert persistence
        metrics: Source of metric samples
        dispatcher: Runs the rule's actions when an alert fires
        event_bus: Optional bus for ``alert.*`` events
        evaluation_interval: Seconds between ``evaluate_all`` passes
        clock: Current UTC time (injectable for tests)
    """

    def __init__(
        self,
        store: AlertStore,
        metrics: MetricsSource,
        dispatcher: ActionDispatcher,
        event_bus: EventBus | None = None,
        evaluation_interval: float = 15.0,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._metrics = metrics
        self._dispatcher = dispatcher
        self._event_bus = event_bus
        self._interval = evaluation_interval
        self._clock = clock
        self._states: dict[str, RuleState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self.is_running:
            return
        self._hydrate()
        self._task = asyncio.create_task(self._loop(), name="runspine-alert-engine")
        logger.info("alert_engine.started", interval=self._interval, rules=len(self._store.list_rules()))

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("alert_engine.stopped")

    def _hydrate(self) -> None:
        """Rebuild rule states from persisted alerts."""
        for alert in sorted(self._store.list_alerts(), key=lambda a: a.fired_at):
            state = self._state(alert.rule_id)
            if alert.is_active:
                state.phase = RulePhase.FIRING
                state.active_alert_id = alert.id
                state.condition_met = True
            elif alert.resolved_at is not None and (
                state.last_resolved_at is None or alert.resolved_at > state.last_resolved_at
            ):
                state.last_resolved_at = alert.resolved_at

    async def _loop(self) -> None:
        while True:
            try:
                await self.evaluate_all()
            except Exception as e:
                logger.error("alert_engine.pass_failed", error=str(e))
            await asyncio.sleep(self._interval)

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate_all(self) -> list[AlertEvaluation]:
        """One pass over every enabled rule; a failing rule never stops the pass."""
        if isinstance(self._metrics, PrunableMetrics):
            removed = self._metrics.prune(self._clock())
            if removed:
                logger.debug("alert_engine.metrics_pruned", samples=removed)

        evaluations: list[AlertEvaluation] = []
        for rule in self._store.list_rules(enabled_only=True):
            try:
                evaluations.append(await self.process_rule(rule))
            except Exception as e:
                logger.error("alert.rule_failed", rule_id=rule.id, error=str(e))
        return evaluations

    async def evaluate_rule(self, rule_id: str) -> AlertEvaluation:
        """Evaluate ``rule_id`` against current data without side effects."""
        rule = self._get_rule(rule_id)
        return await self._evaluate(rule, self._clock())

    async def process_rule(self, rule: AlertRule) -> AlertEvaluation:
        now = self._clock()
        evaluation = await self._evaluate(rule, now)

        async with self._lock_for(rule.id):
            state = self._state(rule.id)
            state.last_evaluated_at = now
            state.last_value = evaluation.current_value
            state.condition_met = evaluation.is_triggered

            if evaluation.is_triggered:
                if state.active_alert_id is not None:
                    return evaluation
                if state.in_cooldown(rule, now):
                    await self._suppress(rule, state, evaluation, now)
                    return evaluation
                assert evaluation.current_value is not None
                await self._fire_locked(rule, evaluation.current_value, evaluation.message, now)
            elif state.active_alert_id is not None:
                await self._resolve_locked(state.active_alert_id, now)

        return evaluation

    async def _evaluate(self, rule: AlertRule, now: datetime) -> AlertEvaluation:
        samples = await self._metrics.query(rule.metric_name, rule.tags, rule.evaluation_window, now)
        current = reduce_window(rule.condition, samples)
        if current is None:
            return AlertEvaluation(
                rule_id=rule.id,
                is_triggered=False,
                current_value=None,
                threshold=rule.threshold,
                message="No data available",
            )

        triggered = evaluate_condition(rule.condition, current, rule.threshold)
        return AlertEvaluation(
            rule_id=rule.id,
            is_triggered=triggered,
            current_value=current,
            threshold=rule.threshold,
            message=format_alert_message(rule, current) if triggered else None,
        )

    async def _suppress(
        self,
        rule: AlertRule,
        state: RuleState,
        evaluation: AlertEvaluation,
        now: datetime,
    ) -> None:
        state.suppressed_count += 1
        assert state.last_resolved_at is not None
        remaining = rule.cooldown_period - (now - state.last_resolved_at)
        logger.info(
            "alert.suppressed",
            rule_id=rule.id,
            value=evaluation.current_value,
            cooldown_remaining_seconds=remaining.total_seconds(),
        )
        await self._publish(
            "alert.suppressed",
            {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "current_value": evaluation.current_value,
                "cooldown_remaining_seconds": remaining.total_seconds(),
            },
        )

    # =========================================================================
    # Lifecycle transitions
    # =========================================================================

    async def fire_alert(self, rule_id: str, value: float, message: str | None = None) -> Alert:
        """Manually fire ``rule_id``.

        Bypasses the cooldown. If the rule already has an active alert, that
        alert is returned and no actions run.
        """
        rule = self._get_rule(rule_id)
        async with self._lock_for(rule.id):
            state = self._state(rule.id)
            if state.active_alert_id is not None:
                active = self._store.get_alert(state.active_alert_id)
                if active is not None and active.is_active:
                    return active
            return await self._fire_locked(rule, value, message, self._clock())

    async def _fire_locked(
        self,
        rule: AlertRule,
        value: float,
        message: str | None,
        now: datetime,
    ) -> Alert:
        alert = Alert(
            id=new_id("alert"),
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            message=message or format_alert_message(rule, value),
            current_value=value,
            threshold=rule.threshold,
            fired_at=now,
            tags=dict(rule.tags),
        )
        self._store.save_alert(alert)

        state = self._state(rule.id)
        state.phase = RulePhase.FIRING
        state.active_alert_id = alert.id

        with LogContext(alert_id=alert.id, rule_id=rule.id):
            logger.warning(
                "alert.fired",
                rule_name=rule.name,
                severity=alert.severity.value,
                value=value,
                threshold=rule.threshold,
            )
            results = await self._dispatcher.dispatch(rule, alert)

        await self._publish(
            "alert.fired",
            {"alert": alert.to_dict(), "actions": [_action_dict(r) for r in results]},
            correlation_id=alert.id,
        )
        return alert

    async def acknowledge(self, alert_id: str, message: str | None = None) -> Alert:
        """Firing → Acknowledged. A resolved alert is returned unchanged."""
        alert = self._get_alert(alert_id)
        async with self._lock_for(alert.rule_id):
            alert = self._get_alert(alert_id)
            if alert.status is AlertStatus.RESOLVED:
                logger.debug("alert.acknowledge_ignored", alert_id=alert_id, status=alert.status.value)
                return alert

            alert.status = AlertStatus.ACKNOWLEDGED
            alert.acknowledged_at = self._clock()
            alert.acknowledgement_message = message
            self._store.save_alert(alert)

        logger.info("alert.acknowledged", alert_id=alert_id, rule_id=alert.rule_id)
        await self._publish(
            "alert.acknowledged",
            {"alert": alert.to_dict()},
            correlation_id=alert.id,
        )
        return alert

    async def resolve(self, alert_id: str) -> Alert:
        """Mark ``alert_id`` Resolved; anchors the rule's cooldown at now."""
        alert = self._get_alert(alert_id)
        async with self._lock_for(alert.rule_id):
            return await self._resolve_locked(alert_id, self._clock())

    async def _resolve_locked(self, alert_id: str, now: datetime) -> Alert:
        alert = self._get_alert(alert_id)
        if alert.status is AlertStatus.RESOLVED:
            return alert

        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = now
        self._store.save_alert(alert)

        state = self._state(alert.rule_id)
        if state.active_alert_id == alert_id:
            state.active_alert_id = None
            state.phase = RulePhase.NORMAL
        state.last_resolved_at = now

        duration = alert.duration(now).total_seconds()
        logger.info("alert.resolved", alert_id=alert_id, rule_id=alert.rule_id, duration_seconds=duration)
        await self._publish(
            "alert.resolved",
            {"alert": alert.to_dict(), "duration_seconds": duration},
            correlation_id=alert.id,
        )
        return alert

    async def remove_rule(self, rule_id: str) -> bool:
        """Delete a rule, resolving its active alert first."""
        async with self._lock_for(rule_id):
            state = self._states.get(rule_id)
            if state is not None and state.active_alert_id is not None:
                await self._resolve_locked(state.active_alert_id, self._clock())
            self._states.pop(rule_id, None)
            removed = self._store.delete_rule(rule_id)
        self._release_lock(rule_id)
        return removed

    # =========================================================================
    # Inspection
    # =========================================================================

    def active_alerts(self) -> list[Alert]:
        return self._store.active_alerts()

    def rule_state(self, rule_id: str) -> RuleState | None:
        return self._states.get(rule_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_rule(self, rule_id: str) -> AlertRule:
        rule = self._store.get_rule(rule_id)
        if rule is None:
            raise AlertRuleNotFoundError(rule_id)
        return rule

    def _get_alert(self, alert_id: str) -> Alert:
        alert = self._store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def _state(self, rule_id: str) -> RuleState:
        state = self._states.get(rule_id)
        if state is None:
            state = self._states[rule_id] = RuleState(rule_id=rule_id)
        return state

    def _lock_for(self, rule_id: str) -> asyncio.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = self._locks[rule_id] = asyncio.Lock()
        return lock

    def _release_lock(self, rule_id: str) -> None:
        lock = self._locks.get(rule_id)
        if lock is not None and not lock.locked():
            del self._locks[rule_id]

    async def _publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            Event(
                event_type=event_type,
                source=EVENT_SOURCE,
                payload=payload,
                correlation_id=correlation_id,
            )
        )


def _action_dict(result: ActionResult) -> dict[str, Any]:
    return {
        "action_type": result.action_type.value,
        "success": result.success,
        "error_message": result.error_message,
    }


__all__ = ["AlertEngine", "RulePhase", "RuleState"]
