"""Tests for runspine.core.models and the in-memory store."""

from datetime import timedelta

from runspine.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    ExecutionStatus,
    FileWatchTrigger,
    ManualTrigger,
    Runbook,
    RunbookExecution,
    ScheduleTrigger,
    StepResult,
    StepStatus,
    TriggerResult,
    TriggerType,
    WebhookTrigger,
    trigger_to_dict,
)
from runspine.core.timestamps import generate_ulid, new_id
from runspine.storage.memory import InMemoryStore
from tests._support import T0, make_step


class TestTriggers:
    def test_trigger_types(self):
        assert ScheduleTrigger("0 2 * * *").trigger_type is TriggerType.SCHEDULE
        assert WebhookTrigger(secret="s").trigger_type is TriggerType.WEBHOOK
        assert FileWatchTrigger(path="/tmp").trigger_type is TriggerType.FILE_WATCH
        assert ManualTrigger().trigger_type is TriggerType.MANUAL

    def test_webhook_secret_never_serialized(self):
        data = trigger_to_dict(WebhookTrigger(secret="hunter2", allowed_ip_range="10.0.0.0/8"))
        assert "hunter2" not in str(data)
        assert "hunter2" not in repr(WebhookTrigger(secret="hunter2"))
        assert data == {"type": "webhook", "allowed_ip_range": "10.0.0.0/8"}

    def test_file_watch_debounce_seconds(self):
        data = trigger_to_dict(FileWatchTrigger(path="/in", debounce=timedelta(seconds=2)))
        assert data["debounce_seconds"] == 2.0


class TestRunbookStep:
    def test_max_attempts(self):
        assert make_step("a", "t").max_attempts == 1
        assert make_step("a", "t", max_retries=2).max_attempts == 3


class TestExecution:
    def test_statuses(self):
        assert not ExecutionStatus.RUNNING.is_terminal
        assert ExecutionStatus.CANCELED.is_terminal
        assert StepStatus.SKIPPED.is_terminal
        assert not StepStatus.PENDING.is_terminal

    def test_to_dict(self):
        execution = RunbookExecution(
            id="exec_1",
            runbook_id="rb-1",
            trigger_type=TriggerType.WEBHOOK,
            trigger_info="Payload size: 12",
            started_at=T0,
            completed_at=T0 + timedelta(seconds=3),
            status=ExecutionStatus.SUCCEEDED,
            step_results={"a": StepResult(step_id="a", status=StepStatus.SUCCEEDED, attempts=1)},
        )
        data = execution.to_dict()
        assert data["trigger_type"] == "webhook"
        assert data["duration_seconds"] == 3.0
        assert data["step_results"]["a"]["status"] == "succeeded"

    def test_trigger_result(self):
        assert TriggerResult.ok("exec_1").to_dict()["success"] is True
        failed = TriggerResult.fail("disabled", "DISABLED_RUNBOOK")
        assert not failed.success
        assert failed.execution_id is None


class TestIds:
    def test_ulid_shape(self):
        assert len(generate_ulid()) == 26

    def test_prefixed(self):
        assert new_id("alert").startswith("alert_")


class TestInMemoryStore:
    def test_copies_on_write_and_read(self):
        store = InMemoryStore()
        runbook = Runbook(id="rb", name="RB", steps=[make_step("a", "t")])
        store.save_runbook(runbook)

        runbook.name = "mutated"
        loaded = store.get_runbook("rb")
        assert loaded.name == "RB"

        loaded.name = "also mutated"
        assert store.get_runbook("rb").name == "RB"

    def test_list_executions_filters_and_orders(self):
        store = InMemoryStore()
        for i, status in enumerate([ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED, ExecutionStatus.SUCCEEDED]):
            store.save_execution(
                RunbookExecution(
                    id=f"exec_{i}",
                    runbook_id="rb-1" if i < 2 else "rb-2",
                    trigger_type=TriggerType.MANUAL,
                    status=status,
                    started_at=T0 + timedelta(minutes=i),
                )
            )

        assert [e.id for e in store.list_executions()] == ["exec_2", "exec_1", "exec_0"]
        assert [e.id for e in store.list_executions(runbook_id="rb-1")] == ["exec_1", "exec_0"]
        assert [e.id for e in store.list_executions(status=ExecutionStatus.FAILED)] == ["exec_1"]
        assert [e.id for e in store.list_executions(since=T0 + timedelta(minutes=1))] == ["exec_2", "exec_1"]
        assert len(store.list_executions(limit=1)) == 1

    def test_active_alerts(self):
        store = InMemoryStore()
        common = dict(
            rule_name="CPU",
            severity=AlertSeverity.WARNING,
            message="m",
            current_value=95.0,
            threshold=90.0,
        )
        store.save_alert(Alert(id="a1", rule_id="r1", **common))
        store.save_alert(Alert(id="a2", rule_id="r1", status=AlertStatus.RESOLVED, **common))
        store.save_alert(Alert(id="a3", rule_id="r2", status=AlertStatus.ACKNOWLEDGED, **common))

        assert {a.id for a in store.active_alerts()} == {"a1", "a3"}
        assert [a.id for a in store.list_alerts(status=AlertStatus.RESOLVED)] == ["a2"]
        assert {a.id for a in store.list_alerts(rule_id="r2")} == {"a3"}
