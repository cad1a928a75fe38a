"""Runspine Alerts -- metric rules, alert lifecycle and action dispatch.

Architecture::

    metrics.py   MetricsSource protocol + InMemoryMetricsStore
    actions.py   ActionDispatcher (notification / email / webhook / run_runbook / script)
    engine.py    AlertEngine: evaluate → fire / suppress / resolve
"""

from runspine.alerts.actions import (
    ActionDispatcher,
    EmailSender,
    EventBusNotificationSink,
    NotificationSink,
    SmtpEmailSender,
)
from runspine.alerts.engine import AlertEngine, RulePhase, RuleState
from runspine.alerts.metrics import InMemoryMetricsStore, MetricsSource

__all__ = [
    "ActionDispatcher",
    "AlertEngine",
    "EmailSender",
    "EventBusNotificationSink",
    "InMemoryMetricsStore",
    "MetricsSource",
    "NotificationSink",
    "RulePhase",
    "RuleState",
    "SmtpEmailSender",
]
