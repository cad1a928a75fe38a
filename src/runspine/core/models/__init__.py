"""Dataclass models for runbooks, executions and alerting.

Modules
-------
triggers
    Closed set of trigger variants (schedule, webhook, file watch, manual).
runbook
    Runbook and RunbookStep definitions.
execution
    RunbookExecution, StepResult, TriggerResult.
alerting
    AlertRule, Alert, MetricSample, ActionResult.
"""

from runspine.core.models.alerting import (
    ActionResult,
    Alert,
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertEvaluation,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    MetricSample,
)
from runspine.core.models.execution import (
    ExecutionStatus,
    RunbookExecution,
    StepResult,
    StepStatus,
    TriggerResult,
)
from runspine.core.models.runbook import Runbook, RunbookStep, StepCondition, StepRetry
from runspine.core.models.triggers import (
    FileWatchTrigger,
    ManualTrigger,
    ScheduleTrigger,
    Trigger,
    TriggerType,
    WebhookTrigger,
    trigger_to_dict,
)

__all__ = [
    # triggers
    "TriggerType",
    "ScheduleTrigger",
    "WebhookTrigger",
    "FileWatchTrigger",
    "ManualTrigger",
    "Trigger",
    "trigger_to_dict",
    # runbook
    "StepCondition",
    "StepRetry",
    "RunbookStep",
    "Runbook",
    # execution
    "ExecutionStatus",
    "StepStatus",
    "StepResult",
    "RunbookExecution",
    "TriggerResult",
    # alerting
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
