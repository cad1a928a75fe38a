"""Execution records produced by the RunbookExecutor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from runspine.core.models.triggers import TriggerType
from runspine.core.timestamps import to_iso8601, utc_now


class ExecutionStatus(str, Enum):
    """Overall status of a runbook execution."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class StepStatus(str, Enum):
    """Per-step status within one execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


@dataclass
class StepResult:
    """Outcome of a single step (all attempts)."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    output: str | None = None
    error: str | None = None
    exit_code: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunbookExecution:
    """One firing of a runbook.

    Mutated only by the executor task running it; frozen once ``status``
    is terminal.
    """

    id: str
    runbook_id: str
    trigger_type: TriggerType
    status: ExecutionStatus = ExecutionStatus.RUNNING
    step_results: dict[str, StepResult] = field(default_factory=dict)
    trigger_info: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def steps_with_status(self, status: StepStatus) -> list[str]:
        return [sid for sid, r in self.step_results.items() if r.status is status]

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "id": self.id,
            "runbook_id": self.runbook_id,
            "status": self.status.value,
            "trigger_type": self.trigger_type.value,
            "trigger_info": self.trigger_info,
            "started_at": self.started_at.isoformat(),
            "completed_at": to_iso8601(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "step_results": {sid: r.to_dict() for sid, r in self.step_results.items()},
        }


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of ``TriggerService.fire`` and its webhook/schedule callers."""

    success: bool
    execution_id: str | None = None
    error_message: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, execution_id: str) -> TriggerResult:
        return cls(success=True, execution_id=execution_id)

    @classmethod
    def fail(cls, error_message: str, error_code: str | None = None) -> TriggerResult:
        return cls(success=False, error_message=error_message, error_code=error_code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "execution_id": self.execution_id,
            "error_message": self.error_message,
            "error_code": self.error_code,
        }


__all__ = [
    "ExecutionStatus",
    "StepStatus",
    "StepResult",
    "RunbookExecution",
    "TriggerResult",
]
