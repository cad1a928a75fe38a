"""
Pure predicates for alert conditions and step gating.

Nothing in this module does I/O or keeps state; the AlertEngine and the
RunbookExecutor call into it with plain values.

Alert conditions::

    greater_than            current >  threshold
    greater_than_or_equal   current >= threshold
    less_than               current <  threshold
    less_than_or_equal      current <= threshold
    equal                   |current - threshold| <  1e-4
    not_equal               |current - threshold| >= 1e-4
    absolute_change         |last - first| > threshold
    percent_change          |(last - first) / first| > threshold   (ratio)

Window reduction: threshold conditions compare the window average, change
conditions compare the first and last sample of the window.

Step gating::

    on_success   every dependency Succeeded
    on_failure   at least one dependency Failed
    always       dependencies terminal, whatever the outcome
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from runspine.core.models.alerting import AlertCondition, AlertRule, MetricSample
from runspine.core.models.execution import StepStatus
from runspine.core.models.runbook import StepCondition

EQUALITY_EPSILON = 1e-4

_DESCRIPTIONS: dict[AlertCondition, str] = {
    AlertCondition.GREATER_THAN: ">",
    AlertCondition.GREATER_THAN_OR_EQUAL: ">=",
    AlertCondition.LESS_THAN: "<",
    AlertCondition.LESS_THAN_OR_EQUAL: "<=",
    AlertCondition.EQUAL: "==",
    AlertCondition.NOT_EQUAL: "!=",
    AlertCondition.ABSOLUTE_CHANGE: "changed by >",
    AlertCondition.PERCENT_CHANGE: "changed by >",
}


def evaluate_condition(condition: AlertCondition, current: float, threshold: float) -> bool:
    """Apply ``condition`` to an already-reduced value.

    For change conditions ``current`` is the signed delta (absolute) or the
    signed ratio delta/previous (percent).
    """
    match condition:
        case AlertCondition.GREATER_THAN:
            return current > threshold
        case AlertCondition.GREATER_THAN_OR_EQUAL:
            return current >= threshold
        case AlertCondition.LESS_THAN:
            return current < threshold
        case AlertCondition.LESS_THAN_OR_EQUAL:
            return current <= threshold
        case AlertCondition.EQUAL:
            return abs(current - threshold) < EQUALITY_EPSILON
        case AlertCondition.NOT_EQUAL:
            return abs(current - threshold) >= EQUALITY_EPSILON
        case AlertCondition.ABSOLUTE_CHANGE | AlertCondition.PERCENT_CHANGE:
            return abs(current) > threshold
    raise ValueError(f"Unknown alert condition: {condition!r}")


def reduce_window(condition: AlertCondition, samples: Sequence[MetricSample]) -> float | None:
    """Reduce ordered window samples to the value compared against the threshold.

    Returns None when there is nothing to compare: no samples, or a
    percent change from a zero baseline.
    """
    if not samples:
        return None

    first = samples[0].value
    last = samples[-1].value

    if condition is AlertCondition.ABSOLUTE_CHANGE:
        return last - first
    if condition is AlertCondition.PERCENT_CHANGE:
        if first == 0:
            return None
        return (last - first) / first
    return sum(s.value for s in samples) / len(samples)


def describe_condition(condition: AlertCondition) -> str:
    return _DESCRIPTIONS[condition]


def format_alert_message(rule: AlertRule, current: float) -> str:
    """``cpu is > 90.0 (current: 95.00)``"""
    return (
        f"{rule.metric_name} is {describe_condition(rule.condition)} "
        f"{rule.threshold} (current: {current:.2f})"
    )


def should_run_step(condition: StepCondition, dependency_statuses: Iterable[StepStatus]) -> bool:
    """Decide whether a step whose dependencies are all terminal should execute.

    A step with no dependencies runs for ``on_success`` and ``always``; an
    ``on_failure`` root has nothing that could have failed, so it is skipped.
    """
    statuses = list(dependency_statuses)
    match condition:
        case StepCondition.ALWAYS:
            return True
        case StepCondition.ON_SUCCESS:
            return all(s is StepStatus.SUCCEEDED for s in statuses)
        case StepCondition.ON_FAILURE:
            return any(s is StepStatus.FAILED for s in statuses)
    raise ValueError(f"Unknown step condition: {condition!r}")


__all__ = [
    "EQUALITY_EPSILON",
    "evaluate_condition",
    "reduce_window",
    "describe_condition",
    "format_alert_message",
    "should_run_step",
]
