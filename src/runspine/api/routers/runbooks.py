"""
Runbooks router: inspection, manual fire and trigger reload.

Endpoints:
    GET  /runbooks                 List runbooks with trigger state
    GET  /runbooks/{id}            Runbook definition + trigger state
    POST /runbooks/{id}/fire       Manual fire (202)
    POST /runbooks/{id}/reload     Re-arm the trigger from the stored definition
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from runspine.api.deps import RuntimeDep
from runspine.api.middleware.errors import problem_response, status_for_error_code
from runspine.api.schemas import FireRequest, ProblemDetail, TriggerResponse
from runspine.core.errors import RunbookNotFoundError
from runspine.core.models import Runbook, TriggerType
from runspine.runtime import Runtime

router = APIRouter(prefix="/runbooks")


def _runbook_view(runtime: Runtime, runbook: Runbook) -> dict[str, Any]:
    state = runtime.triggers.trigger_state(runbook.id)
    return {
        **runbook.to_dict(),
        "trigger_state": state.to_dict() if state else None,
        "in_flight_execution": runtime.executor.in_flight_execution(runbook.id),
    }


@router.get("")
def list_runbooks(runtime: RuntimeDep) -> list[dict[str, Any]]:
    runbooks = sorted(runtime.store.list_runbooks(), key=lambda r: r.id)
    return [_runbook_view(runtime, r) for r in runbooks]


@router.get("/{runbook_id}", responses={404: {"model": ProblemDetail}})
def get_runbook(runbook_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    runbook = runtime.store.get_runbook(runbook_id)
    if runbook is None:
        raise RunbookNotFoundError(runbook_id)
    return _runbook_view(runtime, runbook)


@router.post(
    "/{runbook_id}/fire",
    status_code=202,
    response_model=TriggerResponse,
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def fire_runbook(
    runbook_id: str,
    request: Request,
    runtime: RuntimeDep,
    body: FireRequest | None = None,
):
    """Start an execution now, whatever the runbook's trigger type."""
    result = await runtime.triggers.fire(
        runbook_id,
        TriggerType.MANUAL,
        body.trigger_info if body else None,
    )
    if not result.success:
        return problem_response(
            status=status_for_error_code(result.error_code),
            title=result.error_message or "Fire rejected",
            instance=str(request.url.path),
            code=result.error_code,
        )
    return TriggerResponse.from_result(result)


@router.post("/{runbook_id}/reload", responses={404: {"model": ProblemDetail}, 422: {"model": ProblemDetail}})
async def reload_runbook(runbook_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    if runtime.store.get_runbook(runbook_id) is None:
        raise RunbookNotFoundError(runbook_id)
    await runtime.triggers.reload(runbook_id)
    state = runtime.triggers.trigger_state(runbook_id)
    return {"runbook_id": runbook_id, "trigger_state": state.to_dict() if state else None}
