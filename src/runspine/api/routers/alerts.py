"""
Alerts router: alert lifecycle, rule evaluation and metric intake.

Endpoints:
    GET  /alerts                          List alerts (status / rule filters)
    GET  /alerts/rules                    List rules with lifecycle state
    POST /alerts/rules/{id}/evaluate      Side-effect-free evaluation
    POST /alerts/rules/{id}/fire          Manual fire
    GET  /alerts/{id}                     Alert detail
    POST /alerts/{id}/acknowledge         Firing → Acknowledged
    POST /alerts/{id}/resolve             → Resolved (anchors the cooldown)
    POST /metrics                         Record a metric sample
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from runspine.api.deps import RuntimeDep
from runspine.api.schemas import AcknowledgeRequest, FireAlertRequest, MetricSampleRequest, ProblemDetail
from runspine.core.errors import AlertNotFoundError
from runspine.core.models import AlertStatus

router = APIRouter(prefix="/alerts")
metrics_router = APIRouter(prefix="/metrics")

_NOT_FOUND = {404: {"model": ProblemDetail}}


@router.get("")
def list_alerts(
    runtime: RuntimeDep,
    status: AlertStatus | None = Query(None, description="Filter by status"),
    rule_id: str | None = Query(None, description="Filter by rule"),
    active: bool = Query(False, description="Only firing or acknowledged alerts"),
) -> list[dict[str, Any]]:
    if active:
        alerts = runtime.alerts.active_alerts()
    else:
        alerts = runtime.store.list_alerts(status=status, rule_id=rule_id)
    return [a.to_dict() for a in alerts]


@router.get("/rules")
def list_rules(runtime: RuntimeDep) -> list[dict[str, Any]]:
    rules = sorted(runtime.store.list_rules(), key=lambda r: r.id)
    views = []
    for rule in rules:
        state = runtime.alerts.rule_state(rule.id)
        views.append({**rule.to_dict(), "state": state.to_dict() if state else None})
    return views


@router.post("/rules/{rule_id}/evaluate", responses=_NOT_FOUND)
async def evaluate_rule(rule_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    evaluation = await runtime.alerts.evaluate_rule(rule_id)
    return {
        "rule_id": evaluation.rule_id,
        "is_triggered": evaluation.is_triggered,
        "current_value": evaluation.current_value,
        "threshold": evaluation.threshold,
        "message": evaluation.message,
    }


@router.post("/rules/{rule_id}/fire", status_code=201, responses=_NOT_FOUND)
async def fire_alert(rule_id: str, body: FireAlertRequest, runtime: RuntimeDep) -> dict[str, Any]:
    alert = await runtime.alerts.fire_alert(rule_id, body.value, body.message)
    return alert.to_dict()


@router.get("/{alert_id}", responses=_NOT_FOUND)
def get_alert(alert_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    alert = runtime.store.get_alert(alert_id)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    return alert.to_dict()


@router.post("/{alert_id}/acknowledge", responses=_NOT_FOUND)
async def acknowledge_alert(
    alert_id: str,
    runtime: RuntimeDep,
    body: AcknowledgeRequest | None = None,
) -> dict[str, Any]:
    alert = await runtime.alerts.acknowledge(alert_id, body.message if body else None)
    return alert.to_dict()


@router.post("/{alert_id}/resolve", responses=_NOT_FOUND)
async def resolve_alert(alert_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    alert = await runtime.alerts.resolve(alert_id)
    return alert.to_dict()


@metrics_router.post("", status_code=202)
def record_metric(body: MetricSampleRequest, runtime: RuntimeDep) -> dict[str, Any]:
    sample = runtime.metrics.record(body.metric_name, body.value, body.timestamp, body.tags)
    return {
        "metric_name": sample.metric_name,
        "value": sample.value,
        "timestamp": sample.timestamp.isoformat(),
        "tags": sample.tags,
    }
