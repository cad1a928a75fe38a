"""Tests for runspine.alerts.engine.AlertEngine."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from runspine.alerts.actions import ActionDispatcher
from runspine.alerts.engine import AlertEngine, RulePhase
from runspine.alerts.metrics import InMemoryMetricsStore
from runspine.core.errors import AlertNotFoundError, AlertRuleNotFoundError
from runspine.core.models import (
    Alert,
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertStatus,
)
from tests._support import T0, RecordingSink


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(store, metrics, event_bus, clock, sink):
    dispatcher = ActionDispatcher(notification_sink=sink)
    return AlertEngine(store, metrics, dispatcher, event_bus, evaluation_interval=0.01, clock=clock)


@pytest.fixture
def cpu_rule(store) -> AlertRule:
    rule = AlertRule(
        id="cpu-high",
        name="CPU high",
        metric_name="cpu",
        condition=AlertCondition.GREATER_THAN,
        threshold=90.0,
        evaluation_window=timedelta(minutes=1),
        cooldown_period=timedelta(minutes=30),
        severity=AlertSeverity.CRITICAL,
        actions=[AlertAction(type=AlertActionType.NOTIFICATION)],
    )
    store.save_rule(rule)
    return rule


def _types(events) -> list[str]:
    return [e.event_type for e in events if e.event_type.startswith("alert.") and e.event_type != "alert.notification"]


# ------------------------------------------------------------------ #
# Evaluation
# ------------------------------------------------------------------ #


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_no_data(self, engine, cpu_rule):
        evaluation = await engine.evaluate_rule("cpu-high")
        assert not evaluation.is_triggered
        assert evaluation.current_value is None
        assert evaluation.message == "No data available"

    @pytest.mark.asyncio
    async def test_window_average(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 100, T0 - timedelta(seconds=30))
        metrics.record("cpu", 90, T0)
        metrics.record("cpu", 10, T0 - timedelta(minutes=5))  # outside the window

        evaluation = await engine.evaluate_rule("cpu-high")

        assert evaluation.current_value == pytest.approx(95)
        assert evaluation.is_triggered
        assert evaluation.message == "cpu is > 90.0 (current: 95.00)"

    @pytest.mark.asyncio
    async def test_evaluate_has_no_side_effects(self, engine, store, metrics, sink, cpu_rule):
        metrics.record("cpu", 99, T0)

        await engine.evaluate_rule("cpu-high")

        assert store.list_alerts() == []
        assert sink.notified == []
        assert engine.rule_state("cpu-high") is None

    @pytest.mark.asyncio
    async def test_unknown_rule(self, engine):
        with pytest.raises(AlertRuleNotFoundError):
            await engine.evaluate_rule("ghost")

    @pytest.mark.asyncio
    async def test_tags_filter_samples(self, engine, store, metrics):
        store.save_rule(
            AlertRule(
                id="web-cpu",
                name="Web CPU",
                metric_name="cpu",
                condition=AlertCondition.GREATER_THAN,
                threshold=90.0,
                tags={"role": "web"},
            )
        )
        metrics.record("cpu", 99, T0, {"role": "db"})
        metrics.record("cpu", 50, T0, {"role": "web", "host": "web-1"})

        evaluation = await engine.evaluate_rule("web-cpu")

        assert evaluation.current_value == pytest.approx(50)
        assert not evaluation.is_triggered

    @pytest.mark.asyncio
    async def test_percent_change(self, engine, store, metrics):
        store.save_rule(
            AlertRule(
                id="qps-drop",
                name="QPS drop",
                metric_name="qps",
                condition=AlertCondition.PERCENT_CHANGE,
                threshold=0.5,
            )
        )
        metrics.record("qps", 200, T0 - timedelta(minutes=4))
        metrics.record("qps", 150, T0 - timedelta(minutes=2))
        metrics.record("qps", 80, T0)

        evaluation = await engine.evaluate_rule("qps-drop")

        assert evaluation.current_value == pytest.approx(-0.6)
        assert evaluation.is_triggered


# ------------------------------------------------------------------ #
# Lifecycle and cooldown
# ------------------------------------------------------------------ #


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_fire_resolve_suppress_refire(self, engine, store, metrics, clock, sink, cpu_rule, published):
        # 95 -> fires
        metrics.record("cpu", 95, clock())
        await engine.process_rule(cpu_rule)
        [first] = engine.active_alerts()
        assert first.status is AlertStatus.FIRING
        assert first.current_value == pytest.approx(95)
        assert first.severity is AlertSeverity.CRITICAL
        assert sink.notified == [("cpu-high", first.id)]

        # +5m: 45 -> resolves, cooldown anchored here
        clock.advance(timedelta(minutes=5))
        metrics.record("cpu", 45, clock())
        await engine.process_rule(cpu_rule)
        resolved = store.get_alert(first.id)
        assert resolved.status is AlertStatus.RESOLVED
        assert resolved.resolved_at == clock()
        assert engine.active_alerts() == []

        # +10m: 95 again, inside the 30m cooldown -> suppressed
        clock.advance(timedelta(minutes=5))
        metrics.record("cpu", 95, clock())
        evaluation = await engine.process_rule(cpu_rule)
        assert evaluation.is_triggered
        assert engine.active_alerts() == []
        assert len(store.list_alerts()) == 1
        assert engine.rule_state("cpu-high").suppressed_count == 1
        assert len(sink.notified) == 1

        # +36m: 31 minutes after the resolve -> fires again
        clock.advance(timedelta(minutes=26))
        metrics.record("cpu", 95, clock())
        await engine.process_rule(cpu_rule)
        [second] = engine.active_alerts()
        assert second.id != first.id
        assert len(sink.notified) == 2

        assert _types(published) == ["alert.fired", "alert.resolved", "alert.suppressed", "alert.fired"]
        suppressed = next(e for e in published if e.event_type == "alert.suppressed")
        assert suppressed.payload["cooldown_remaining_seconds"] == pytest.approx(25 * 60)

    @pytest.mark.asyncio
    async def test_cooldown_anchors_on_resolve_not_fire(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 95, clock())
        await engine.process_rule(cpu_rule)

        # a long incident: still firing 2h later, no second alert
        for _ in range(4):
            clock.advance(timedelta(minutes=30))
            metrics.record("cpu", 95, clock())
            await engine.process_rule(cpu_rule)
        assert len(engine.active_alerts()) == 1

        clock.advance(timedelta(minutes=2))
        metrics.record("cpu", 10, clock())
        await engine.process_rule(cpu_rule)

        clock.advance(timedelta(minutes=2))
        metrics.record("cpu", 95, clock())
        await engine.process_rule(cpu_rule)
        assert engine.active_alerts() == []
        assert engine.rule_state("cpu-high").suppressed_count == 1

    @pytest.mark.asyncio
    async def test_active_alert_does_not_refire(self, engine, metrics, clock, sink, cpu_rule):
        for _ in range(3):
            metrics.record("cpu", 99, clock())
            await engine.process_rule(cpu_rule)
            clock.advance(timedelta(seconds=15))

        assert len(engine.active_alerts()) == 1
        assert len(sink.notified) == 1
        assert engine.rule_state("cpu-high").phase is RulePhase.FIRING

    @pytest.mark.asyncio
    async def test_no_data_resolves_active_alert(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)

        clock.advance(timedelta(minutes=10))
        await engine.process_rule(cpu_rule)

        assert engine.active_alerts() == []
        assert engine.rule_state("cpu-high").phase is RulePhase.NORMAL


class TestManualTransitions:
    @pytest.mark.asyncio
    async def test_acknowledge_then_auto_resolve(self, engine, store, metrics, clock, cpu_rule, published):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        [alert] = engine.active_alerts()

        acked = await engine.acknowledge(alert.id, "looking into it")
        assert acked.status is AlertStatus.ACKNOWLEDGED
        assert acked.acknowledgement_message == "looking into it"
        assert acked.acknowledged_at == clock()
        assert engine.active_alerts()[0].id == alert.id

        clock.advance(timedelta(minutes=2))
        metrics.record("cpu", 20, clock())
        await engine.process_rule(cpu_rule)

        assert store.get_alert(alert.id).status is AlertStatus.RESOLVED
        assert "alert.acknowledged" in _types(published)

    @pytest.mark.asyncio
    async def test_acknowledge_resolved_alert_is_noop(self, engine, store, metrics, clock, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        [alert] = engine.active_alerts()
        await engine.resolve(alert.id)

        result = await engine.acknowledge(alert.id, "late")

        assert result.status is AlertStatus.RESOLVED
        assert result.acknowledgement_message is None

    @pytest.mark.asyncio
    async def test_manual_resolve_starts_cooldown(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        [alert] = engine.active_alerts()

        resolved = await engine.resolve(alert.id)
        assert resolved.resolved_at == clock()
        assert engine.rule_state("cpu-high").last_resolved_at == clock()

        clock.advance(timedelta(seconds=30))
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        assert engine.active_alerts() == []

    @pytest.mark.asyncio
    async def test_resolve_twice_keeps_first_timestamp(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        [alert] = engine.active_alerts()
        first = await engine.resolve(alert.id)

        clock.advance(timedelta(minutes=1))
        second = await engine.resolve(alert.id)

        assert second.resolved_at == first.resolved_at

    @pytest.mark.asyncio
    async def test_fire_alert_bypasses_cooldown(self, engine, metrics, clock, sink, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        [alert] = engine.active_alerts()
        await engine.resolve(alert.id)

        manual = await engine.fire_alert("cpu-high", 97.5, "operator test")

        assert manual.id != alert.id
        assert manual.message == "operator test"
        assert manual.current_value == 97.5
        assert len(sink.notified) == 2

    @pytest.mark.asyncio
    async def test_fire_alert_returns_existing_active(self, engine, sink, cpu_rule):
        first = await engine.fire_alert("cpu-high", 95)
        again = await engine.fire_alert("cpu-high", 96)

        assert again.id == first.id
        assert first.message == "cpu is > 90.0 (current: 95.00)"
        assert len(sink.notified) == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, engine):
        with pytest.raises(AlertNotFoundError):
            await engine.acknowledge("alert_missing")
        with pytest.raises(AlertNotFoundError):
            await engine.resolve("alert_missing")

    @pytest.mark.asyncio
    async def test_remove_rule_resolves_active_alert(self, engine, store, cpu_rule):
        alert = await engine.fire_alert("cpu-high", 95)

        assert await engine.remove_rule("cpu-high") is True

        assert store.get_rule("cpu-high") is None
        assert store.get_alert(alert.id).status is AlertStatus.RESOLVED
        assert engine.rule_state("cpu-high") is None
        assert "cpu-high" not in engine._locks


# ------------------------------------------------------------------ #
# Passes and the background loop
# ------------------------------------------------------------------ #


class FlakyMetrics:
    """Raises for one metric, delegates the rest."""

    def __init__(self, inner, broken: str):
        self.inner = inner
        self.broken = broken

    async def query(self, metric_name, tags, window, now=None):
        if metric_name == self.broken:
            raise ConnectionError("metrics backend down")
        return await self.inner.query(metric_name, tags, window, now)


class TestEvaluateAll:
    @pytest.mark.asyncio
    async def test_failing_rule_does_not_stop_the_pass(self, store, metrics, clock, sink, cpu_rule):
        store.save_rule(
            AlertRule(
                id="disk",
                name="Disk",
                metric_name="disk",
                condition=AlertCondition.GREATER_THAN,
                threshold=80.0,
            )
        )
        engine = AlertEngine(
            store,
            FlakyMetrics(metrics, broken="disk"),
            ActionDispatcher(notification_sink=sink),
            clock=clock,
        )
        metrics.record("cpu", 99, clock())

        evaluations = await engine.evaluate_all()

        assert [e.rule_id for e in evaluations] == ["cpu-high"]
        assert len(engine.active_alerts()) == 1

    @pytest.mark.asyncio
    async def test_disabled_rules_are_skipped(self, engine, store, metrics, clock, cpu_rule):
        cpu_rule.is_enabled = False
        store.save_rule(cpu_rule)
        metrics.record("cpu", 99, clock())

        assert await engine.evaluate_all() == []
        assert engine.active_alerts() == []

    @pytest.mark.asyncio
    async def test_background_loop(self, engine, metrics, clock, cpu_rule):
        metrics.record("cpu", 99, clock())
        await engine.start()
        try:
            assert engine.is_running
            async with asyncio.timeout(1):
                while not engine.active_alerts():
                    await asyncio.sleep(0.01)
        finally:
            await engine.stop()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_running_engine_drops_expired_samples(self, store, clock, sink, cpu_rule):
        metrics = InMemoryMetricsStore(retention=timedelta(hours=1))
        metrics.record("cpu", 50, clock() - timedelta(hours=2))
        metrics.record("cpu", 55, clock() - timedelta(minutes=30))
        engine = AlertEngine(
            store, metrics, ActionDispatcher(notification_sink=sink), evaluation_interval=0.01, clock=clock
        )

        await engine.start()
        try:
            async with asyncio.timeout(1):
                while len(await metrics.query("cpu", {}, timedelta(days=1), clock())) > 1:
                    await asyncio.sleep(0.01)
        finally:
            await engine.stop()

        [kept] = await metrics.query("cpu", {}, timedelta(days=1), clock())
        assert kept.value == 55

    @pytest.mark.asyncio
    async def test_start_restores_state_from_store(self, store, metrics, clock, sink, cpu_rule):
        store.save_alert(
            Alert(
                id="alert_old",
                rule_id="cpu-high",
                rule_name="CPU high",
                severity=AlertSeverity.CRITICAL,
                message="cpu is > 90.0 (current: 99.00)",
                current_value=99.0,
                threshold=90.0,
                fired_at=T0 - timedelta(hours=1),
            )
        )
        engine = AlertEngine(store, metrics, ActionDispatcher(notification_sink=sink), clock=clock, evaluation_interval=60)
        await engine.start()
        await engine.stop()

        state = engine.rule_state("cpu-high")
        assert state.active_alert_id == "alert_old"

        metrics.record("cpu", 99, clock())
        await engine.process_rule(cpu_rule)
        assert sink.notified == []
        assert [a.id for a in engine.active_alerts()] == ["alert_old"]
