"""
Persistence protocols for runspine.

The engines depend on shape, not implementation: anything with these
methods can back them (the bundled ``InMemoryStore``, a SQL repository, a
remote API). Methods are synchronous; implementations that do I/O should
keep each call short.

Architecture:
    ::

        protocols.py
        ├── RunbookStore     : runbook definitions (save / get / list / delete)
        ├── ExecutionStore   : execution records, saved after every step transition
        └── AlertStore       : alert rules + alerts, list by status

Guardrails:
    ❌ DON'T: Return live references the caller can mutate behind the store's back
    ✅ DO: Return copies; callers persist changes with ``save_*``
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from runspine.core.models import (
    Alert,
    AlertRule,
    AlertStatus,
    ExecutionStatus,
    Runbook,
    RunbookExecution,
)


@runtime_checkable
class RunbookStore(Protocol):
    def save_runbook(self, runbook: Runbook) -> None: ...

    def get_runbook(self, runbook_id: str) -> Runbook | None: ...

    def list_runbooks(self) -> Sequence[Runbook]: ...

    def delete_runbook(self, runbook_id: str) -> bool: ...


@runtime_checkable
class ExecutionStore(Protocol):
    def save_execution(self, execution: RunbookExecution) -> None:
        """Insert or replace the record (called after every per-step transition)."""
        ...

    def get_execution(self, execution_id: str) -> RunbookExecution | None: ...

    def list_executions(
        self,
        runbook_id: str | None = None,
        status: ExecutionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> Sequence[RunbookExecution]:
        """Newest first, filtered by runbook, status and ``started_at`` range."""
        ...


@runtime_checkable
class AlertStore(Protocol):
    def save_rule(self, rule: AlertRule) -> None: ...

    def get_rule(self, rule_id: str) -> AlertRule | None: ...

    def list_rules(self, enabled_only: bool = False) -> Sequence[AlertRule]: ...

    def delete_rule(self, rule_id: str) -> bool: ...

    def save_alert(self, alert: Alert) -> None: ...

    def get_alert(self, alert_id: str) -> Alert | None: ...

    def list_alerts(
        self,
        status: AlertStatus | None = None,
        rule_id: str | None = None,
    ) -> Sequence[Alert]:
        """Newest first."""
        ...

    def active_alerts(self) -> Sequence[Alert]:
        """Alerts that are Firing or Acknowledged."""
        ...


__all__ = ["RunbookStore", "ExecutionStore", "AlertStore"]
