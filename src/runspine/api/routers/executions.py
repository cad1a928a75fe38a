"""Executions router: inspect and cancel runbook executions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from runspine.api.deps import RuntimeDep
from runspine.api.schemas import ProblemDetail
from runspine.core.models import ExecutionStatus

router = APIRouter(prefix="/executions")


@router.get("")
def list_executions(
    runtime: RuntimeDep,
    runbook_id: str | None = Query(None, description="Filter by runbook"),
    status: ExecutionStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
) -> list[dict[str, Any]]:
    executions = runtime.executor.list_executions(runbook_id=runbook_id, status=status, limit=limit)
    return [e.to_dict() for e in executions]


@router.get("/{execution_id}", responses={404: {"model": ProblemDetail}})
def get_execution(execution_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    return runtime.executor.get_execution(execution_id).to_dict()


@router.post("/{execution_id}/cancel", responses={404: {"model": ProblemDetail}})
async def cancel_execution(execution_id: str, runtime: RuntimeDep) -> dict[str, Any]:
    """Cancel a running execution; a finished one is returned unchanged."""
    canceled = await runtime.executor.cancel(execution_id)
    execution = runtime.executor.get_execution(execution_id)
    return {"canceled": canceled, "execution": execution.to_dict()}
