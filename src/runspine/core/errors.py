"""
Structured error types for runspine.

Every error the engine raises or reports carries:

- **Category:** what kind of failure (config, auth, orchestration, execution)
- **Retryable:** whether a step attempt that raised it may be retried
- **Code:** a stable machine-readable string used in ``TriggerResult`` and
  mapped to HTTP status codes by the API layer
- **Context:** free-form metadata for logging (runbook_id, step_id, ...)

Hierarchy::

    RunspineError
      ├── ConfigError                 (CONFIG, never retryable)
      │     ├── CyclicGraphError
      │     ├── InvalidCronExpressionError
      │     ├── PathNotFoundError
      │     └── InvalidDefinitionError
      ├── AuthError                   (AUTH, never retryable)
      │     ├── InvalidSignatureError
      │     └── ForbiddenSourceError
      ├── OrchestrationError          (ORCHESTRATION)
      │     ├── RunbookNotFoundError
      │     ├── DisabledRunbookError
      │     ├── ExecutionInProgressError
      │     ├── ExecutionNotFoundError
      │     ├── AlertRuleNotFoundError
      │     └── AlertNotFoundError
      └── TransientError              (EXECUTION, retryable)
            └── StepTimeoutError

Usage:
    from runspine.core.errors import TransientError

    try:
        await client.post(url, json=payload)
    except httpx.TransportError as e:
        raise TransientError("webhook endpoint unreachable", cause=e)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"  # Invalid definitions, cron, paths
    AUTH = "AUTH"  # Webhook signature / source checks
    ORCHESTRATION = "ORCHESTRATION"  # Runbook / alert lifecycle
    EXECUTION = "EXECUTION"  # Step attempts, Thing-runner, network
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


class RunspineError(Exception):
    """Base class for all runspine errors.

    Subclasses set ``default_category``, ``default_retryable`` and ``code``;
    callers may override category/retryable per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    code: str = "INTERNAL"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context)
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RunspineError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = self.context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


# =============================================================================
# CONFIGURATION ERRORS (Never Retryable)
# =============================================================================


class ConfigError(RunspineError):
    """Structural problem with a definition; rejected before anything runs."""

    default_category = ErrorCategory.CONFIG
    code = "INVALID_CONFIG"


class CyclicGraphError(ConfigError):
    """Step graph has a cycle, a dangling DependsOn, or a duplicate StepId."""

    code = "CYCLIC_GRAPH"

    def __init__(self, message: str, *, cycle: list[str] | None = None, **context: Any):
        super().__init__(message, **context)
        self.cycle = cycle or []


class InvalidCronExpressionError(ConfigError):
    """Cron expression (or its timezone) cannot be parsed."""

    code = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str = "", **context: Any):
        self.expression = expression
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid cron expression '{expression}'{detail}", **context)


class PathNotFoundError(ConfigError):
    """File-watch path does not exist at registration time."""

    code = "PATH_NOT_FOUND"

    def __init__(self, path: str, **context: Any):
        self.path = path
        super().__init__(f"Watch path does not exist: {path}", **context)


class InvalidDefinitionError(ConfigError):
    """A runbook or alert rule definition failed schema validation."""

    code = "INVALID_DEFINITION"


# =============================================================================
# AUTH ERRORS
# =============================================================================


class AuthError(RunspineError):
    """Webhook caller could not be authenticated."""

    default_category = ErrorCategory.AUTH
    code = "UNAUTHORIZED"


class InvalidSignatureError(AuthError):
    """HMAC signature missing or does not match the request body."""

    code = "INVALID_SIGNATURE"


class ForbiddenSourceError(AuthError):
    """Caller IP is outside the webhook's allowed CIDR range."""

    code = "FORBIDDEN_SOURCE"


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(RunspineError):
    """Runbook / alert lifecycle errors."""

    default_category = ErrorCategory.ORCHESTRATION
    code = "ORCHESTRATION"


class RunbookNotFoundError(OrchestrationError):
    code = "RUNBOOK_NOT_FOUND"

    def __init__(self, runbook_id: str):
        self.runbook_id = runbook_id
        super().__init__(f"Runbook not found: {runbook_id}", runbook_id=runbook_id)


class DisabledRunbookError(OrchestrationError):
    code = "DISABLED_RUNBOOK"

    def __init__(self, runbook_id: str):
        self.runbook_id = runbook_id
        super().__init__(f"Runbook is disabled: {runbook_id}", runbook_id=runbook_id)


class ExecutionInProgressError(OrchestrationError):
    """A second firing of a runbook while one execution is still in flight."""

    code = "EXECUTION_IN_PROGRESS"

    def __init__(self, runbook_id: str, execution_id: str):
        self.runbook_id = runbook_id
        self.execution_id = execution_id
        super().__init__(
            f"Runbook {runbook_id} already has execution {execution_id} in flight",
            runbook_id=runbook_id,
            execution_id=execution_id,
        )


class ExecutionNotFoundError(OrchestrationError):
    code = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}", execution_id=execution_id)


class AlertRuleNotFoundError(OrchestrationError):
    code = "ALERT_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Alert rule not found: {rule_id}", rule_id=rule_id)


class AlertNotFoundError(OrchestrationError):
    code = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}", alert_id=alert_id)


# =============================================================================
# EXECUTION ERRORS (Usually Retryable)
# =============================================================================


class TransientError(RunspineError):
    """Thing-runner or network failure that may succeed on another attempt."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = True
    code = "TRANSIENT"


class StepTimeoutError(TransientError):
    """A step attempt exceeded its ``timeout_seconds``."""

    code = "STEP_TIMEOUT"

    def __init__(self, step_id: str, timeout_seconds: float):
        self.step_id = step_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Step '{step_id}' timed out after {timeout_seconds:g}s",
            step_id=step_id,
        )


# =============================================================================
# Helpers
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Return whether a step attempt that raised ``error`` may be retried.

    Unknown exceptions from the Thing-runner are treated as transient.
    """
    if isinstance(error, RunspineError):
        return error.retryable
    return True


def error_code(error: BaseException) -> str:
    """Stable code for an exception (``INTERNAL`` for foreign exceptions)."""
    if isinstance(error, RunspineError):
        return error.code
    return "INTERNAL"


__all__ = [
    "ErrorCategory",
    "RunspineError",
    "ConfigError",
    "CyclicGraphError",
    "InvalidCronExpressionError",
    "PathNotFoundError",
    "InvalidDefinitionError",
    "AuthError",
    "InvalidSignatureError",
    "ForbiddenSourceError",
    "OrchestrationError",
    "RunbookNotFoundError",
    "DisabledRunbookError",
    "ExecutionInProgressError",
    "ExecutionNotFoundError",
    "AlertRuleNotFoundError",
    "AlertNotFoundError",
    "TransientError",
    "StepTimeoutError",
    "is_retryable",
    "error_code",
]
