"""
In-memory store implementing every persistence protocol.

Records are deep-copied on the way in and out, so an executor mutating its
working copy never leaks into what readers see until it calls
``save_execution`` again. A single ``threading.RLock`` guards the maps;
the API thread pool and the event loop may both read.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime

from runspine.core.models import (
    Alert,
    AlertRule,
    AlertStatus,
    ExecutionStatus,
    Runbook,
    RunbookExecution,
)


class InMemoryStore:
    """RunbookStore + ExecutionStore + AlertStore backed by dicts."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._runbooks: dict[str, Runbook] = {}
        self._executions: dict[str, RunbookExecution] = {}
        self._rules: dict[str, AlertRule] = {}
        self._alerts: dict[str, Alert] = {}

    # ── Runbooks ─────────────────────────────────────────────────

    def save_runbook(self, runbook: Runbook) -> None:
        with self._lock:
            self._runbooks[runbook.id] = copy.deepcopy(runbook)

    def get_runbook(self, runbook_id: str) -> Runbook | None:
        with self._lock:
            runbook = self._runbooks.get(runbook_id)
            return copy.deepcopy(runbook) if runbook else None

    def list_runbooks(self) -> list[Runbook]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._runbooks.values()]

    def delete_runbook(self, runbook_id: str) -> bool:
        with self._lock:
            return self._runbooks.pop(runbook_id, None) is not None

    # ── Executions ───────────────────────────────────────────────

    def save_execution(self, execution: RunbookExecution) -> None:
        with self._lock:
            self._executions[execution.id] = copy.deepcopy(execution)

    def get_execution(self, execution_id: str) -> RunbookExecution | None:
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    def list_executions(
        self,
        runbook_id: str | None = None,
        status: ExecutionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[RunbookExecution]:
        with self._lock:
            rows = list(self._executions.values())

        if runbook_id is not None:
            rows = [e for e in rows if e.runbook_id == runbook_id]
        if status is not None:
            rows = [e for e in rows if e.status is status]
        if since is not None:
            rows = [e for e in rows if e.started_at >= since]
        if until is not None:
            rows = [e for e in rows if e.started_at <= until]

        rows.sort(key=lambda e: e.started_at, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(e) for e in rows]

    # ── Alert rules ──────────────────────────────────────────────

    def save_rule(self, rule: AlertRule) -> None:
        with self._lock:
            self._rules[rule.id] = copy.deepcopy(rule)

    def get_rule(self, rule_id: str) -> AlertRule | None:
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def list_rules(self, enabled_only: bool = False) -> list[AlertRule]:
        with self._lock:
            rules = [copy.deepcopy(r) for r in self._rules.values()]
        if enabled_only:
            rules = [r for r in rules if r.is_enabled]
        return rules

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    # ── Alerts ───────────────────────────────────────────────────

    def save_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts[alert.id] = copy.deepcopy(alert)

    def get_alert(self, alert_id: str) -> Alert | None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert else None

    def list_alerts(
        self,
        status: AlertStatus | None = None,
        rule_id: str | None = None,
    ) -> list[Alert]:
        with self._lock:
            alerts = list(self._alerts.values())
        if status is not None:
            alerts = [a for a in alerts if a.status is status]
        if rule_id is not None:
            alerts = [a for a in alerts if a.rule_id == rule_id]
        alerts.sort(key=lambda a: a.fired_at, reverse=True)
        return [copy.deepcopy(a) for a in alerts]

    def active_alerts(self) -> list[Alert]:
        return [a for a in self.list_alerts() if a.is_active]


__all__ = ["InMemoryStore"]
