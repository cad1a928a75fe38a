"""Runbook definitions: steps, gating conditions, retry settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from runspine.core.models.triggers import ManualTrigger, Trigger, trigger_to_dict
from runspine.core.timestamps import utc_now


class StepCondition(str, Enum):
    """When a step runs, relative to the outcome of its dependencies."""

    ON_SUCCESS = "on_success"
    ON_FAILURE = "on_failure"
    ALWAYS = "always"


@dataclass(frozen=True)
class StepRetry:
    """Retry settings for one step. ``max_retries`` counts extra attempts."""

    enable_retry: bool = False
    max_retries: int = 0


@dataclass
class RunbookStep:
    """One unit of work delegated to the Thing-runner."""

    step_id: str
    name: str
    thing_id: str
    profile_id: str = "default"
    parameters: dict[str, str] = field(default_factory=dict)
    condition: StepCondition = StepCondition.ON_SUCCESS
    depends_on: frozenset[str] = field(default_factory=frozenset)
    retry: StepRetry | None = None
    timeout_seconds: float | None = None

    @property
    def max_attempts(self) -> int:
        if self.retry is not None and self.retry.enable_retry:
            return self.retry.max_retries + 1
        return 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "thing_id": self.thing_id,
            "profile_id": self.profile_id,
            "parameters": dict(self.parameters),
            "condition": self.condition.value,
            "depends_on": sorted(self.depends_on),
            "retry": (
                {"enable_retry": self.retry.enable_retry, "max_retries": self.retry.max_retries}
                if self.retry
                else None
            ),
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class Runbook:
    """A named set of dependent steps plus the trigger that starts them.

    The trigger is never mutated in place; replace it with a full update
    through ``RunbookStore.save_runbook`` followed by
    ``TriggerService.reload``.
    """

    id: str
    name: str
    steps: list[RunbookStep] = field(default_factory=list)
    trigger: Trigger = field(default_factory=ManualTrigger)
    description: str = ""
    is_enabled: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def get_step(self, step_id: str) -> RunbookStep | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_enabled": self.is_enabled,
            "trigger": trigger_to_dict(self.trigger),
            "steps": [s.to_dict() for s in self.steps],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


__all__ = ["StepCondition", "StepRetry", "RunbookStep", "Runbook"]
