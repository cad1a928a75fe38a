"""
API schemas: request bodies, the trigger envelope and RFC 7807 errors.

Domain records (executions, alerts, runbooks) are returned through their
``to_dict()`` so the wire shape and the log shape stay the same.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from runspine.core.models import TriggerResult


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    ``code`` is the runspine error code (``INVALID_SIGNATURE``,
    ``EXECUTION_IN_PROGRESS``, ...) for programmatic handling.
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str | None = None


class TriggerResponse(BaseModel):
    success: bool
    execution_id: str | None = None
    error_message: str | None = None
    error_code: str | None = None

    @classmethod
    def from_result(cls, result: TriggerResult) -> TriggerResponse:
        return cls(
            success=result.success,
            execution_id=result.execution_id,
            error_message=result.error_message,
            error_code=result.error_code,
        )


class FireRequest(BaseModel):
    trigger_info: str | None = Field(default=None, max_length=1000)


class AcknowledgeRequest(BaseModel):
    message: str | None = Field(default=None, max_length=2000)


class FireAlertRequest(BaseModel):
    value: float
    message: str | None = None


class MetricSampleRequest(BaseModel):
    metric_name: str = Field(..., min_length=1)
    value: float
    timestamp: datetime | None = None
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


__all__ = [
    "AcknowledgeRequest",
    "FireAlertRequest",
    "FireRequest",
    "MetricSampleRequest",
    "ProblemDetail",
    "TriggerResponse",
]
