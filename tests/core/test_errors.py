"""Tests for runspine.core.errors: codes, categories, retryability."""

from runspine.core.errors import (
    ConfigError,
    CyclicGraphError,
    ErrorCategory,
    ExecutionInProgressError,
    InvalidCronExpressionError,
    InvalidSignatureError,
    RunbookNotFoundError,
    RunspineError,
    StepTimeoutError,
    TransientError,
    error_code,
    is_retryable,
)


class TestRunspineError:
    def test_to_dict(self):
        err = TransientError("network down", host="db-01")
        data = err.to_dict()
        assert data["error_type"] == "TransientError"
        assert data["code"] == "TRANSIENT"
        assert data["category"] == ErrorCategory.EXECUTION.value
        assert data["retryable"] is True
        assert data["context"] == {"host": "db-01"}

    def test_cause_is_chained(self):
        cause = OSError("refused")
        err = TransientError("connect failed", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "refused"

    def test_with_context(self):
        err = RunspineError("x").with_context(step_id="a")
        assert err.context == {"step_id": "a"}

    def test_retryable_override(self):
        assert TransientError("x", retryable=False).retryable is False


class TestSubclasses:
    def test_config_errors_are_not_retryable(self):
        for err in (
            ConfigError("bad"),
            CyclicGraphError("cycle", cycle=["a", "b", "a"]),
            InvalidCronExpressionError("* *", "expected 5 fields"),
        ):
            assert err.category is ErrorCategory.CONFIG
            assert not err.retryable

    def test_cron_message(self):
        err = InvalidCronExpressionError("* *", "expected 5 fields, got 2")
        assert err.message == "Invalid cron expression '* *': expected 5 fields, got 2"
        assert err.code == "INVALID_CRON_EXPRESSION"

    def test_execution_in_progress(self):
        err = ExecutionInProgressError("rb-1", "exec_1")
        assert err.code == "EXECUTION_IN_PROGRESS"
        assert err.context == {"runbook_id": "rb-1", "execution_id": "exec_1"}

    def test_step_timeout_is_retryable(self):
        err = StepTimeoutError("deploy", 30)
        assert err.retryable
        assert "30s" in err.message

    def test_codes(self):
        assert RunbookNotFoundError("rb").code == "RUNBOOK_NOT_FOUND"
        assert InvalidSignatureError("bad").code == "INVALID_SIGNATURE"


class TestHelpers:
    def test_foreign_exceptions_are_retryable(self):
        assert is_retryable(ValueError("x"))
        assert not is_retryable(ConfigError("x"))

    def test_error_code(self):
        assert error_code(CyclicGraphError("x")) == "CYCLIC_GRAPH"
        assert error_code(KeyError("x")) == "INTERNAL"
