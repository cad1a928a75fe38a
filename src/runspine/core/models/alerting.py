"""Alert rules, alerts, metric samples and action results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from runspine.core.timestamps import to_iso8601, utc_now


class AlertCondition(str, Enum):
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    ABSOLUTE_CHANGE = "absolute_change"
    PERCENT_CHANGE = "percent_change"

    @property
    def is_change(self) -> bool:
        """Change conditions compare a window delta rather than an average."""
        return self in (AlertCondition.ABSOLUTE_CHANGE, AlertCondition.PERCENT_CHANGE)


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    FIRING = "firing"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class AlertActionType(str, Enum):
    NOTIFICATION = "notification"
    EMAIL = "email"
    WEBHOOK = "webhook"
    RUN_RUNBOOK = "run_runbook"
    SCRIPT = "script"


@dataclass(frozen=True)
class AlertAction:
    """One ordered action of a rule.

    Config keys by type: ``email`` -> ``to`` (comma separated), ``subject``;
    ``webhook`` -> ``url``; ``run_runbook`` -> ``runbook_id``;
    ``script`` -> ``thing_id``, ``profile_id``.
    """

    type: AlertActionType
    config: dict[str, str] = field(default_factory=dict)


@dataclass
class AlertRule:
    id: str
    name: str
    metric_name: str
    condition: AlertCondition
    threshold: float
    evaluation_window: timedelta = timedelta(minutes=5)
    cooldown_period: timedelta = timedelta(minutes=15)
    severity: AlertSeverity = AlertSeverity.WARNING
    description: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    actions: list[AlertAction] = field(default_factory=list)
    is_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "metric_name": self.metric_name,
            "condition": self.condition.value,
            "threshold": self.threshold,
            "evaluation_window_seconds": self.evaluation_window.total_seconds(),
            "cooldown_period_seconds": self.cooldown_period.total_seconds(),
            "severity": self.severity.value,
            "tags": dict(self.tags),
            "actions": [{"type": a.type.value, "config": dict(a.config)} for a in self.actions],
            "is_enabled": self.is_enabled,
        }


@dataclass
class Alert:
    """A firing of an alert rule.

    Created on the Normal -> Firing transition; mutated only by
    acknowledge / resolve.
    """

    id: str
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    message: str
    current_value: float
    threshold: float
    fired_at: datetime = field(default_factory=utc_now)
    status: AlertStatus = AlertStatus.FIRING
    resolved_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledgement_message: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status is not AlertStatus.RESOLVED

    def duration(self, now: datetime | None = None) -> timedelta:
        end = self.resolved_at or now or utc_now()
        return end - self.fired_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "message": self.message,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "status": self.status.value,
            "fired_at": self.fired_at.isoformat(),
            "resolved_at": to_iso8601(self.resolved_at),
            "acknowledged_at": to_iso8601(self.acknowledged_at),
            "acknowledgement_message": self.acknowledgement_message,
            "tags": dict(self.tags),
        }


@dataclass(frozen=True)
class MetricSample:
    metric_name: str
    value: float
    timestamp: datetime = field(default_factory=utc_now)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertEvaluation:
    """Side-effect-free evaluation of one rule against current metric data."""

    rule_id: str
    is_triggered: bool
    current_value: float | None
    threshold: float
    message: str | None = None


@dataclass(frozen=True)
class ActionResult:
    action_type: AlertActionType
    success: bool
    error_message: str | None = None

    @classmethod
    def ok(cls, action_type: AlertActionType) -> ActionResult:
        return cls(action_type=action_type, success=True)

    @classmethod
    def fail(cls, action_type: AlertActionType, error_message: str) -> ActionResult:
        return cls(action_type=action_type, success=False, error_message=error_message)


__all__ = [
    "AlertCondition",
    "AlertSeverity",
    "AlertStatus",
    "AlertActionType",
    "AlertAction",
    "AlertRule",
    "Alert",
    "MetricSample",
    "AlertEvaluation",
    "ActionResult",
]
