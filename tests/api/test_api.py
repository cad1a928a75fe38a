"""HTTP surface tests through FastAPI's TestClient."""

from __future__ import annotations

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from runspine.api.app import create_app
from runspine.core.models import (
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertRule,
    Runbook,
    WebhookTrigger,
)
from runspine.core.settings import RunspineSettings
from runspine.execution.runner import HandlerThingRunner
from runspine.runtime import Runtime
from runspine.storage.memory import InMemoryStore
from runspine.triggers.webhook import sign_payload
from tests._support import RecordingEmailSender, block, make_step, succeed

SECRET = "hook-secret"
BODY = b'{"action":"deploy","ref":"v1.4.2"}'
PREFIX = "/api/v1"


@pytest.fixture
def runtime() -> Runtime:
    store = InMemoryStore()
    runner = HandlerThingRunner()
    runner.register("ok", succeed("done"))
    runner.register("hang", block(asyncio.Event()))

    store.save_runbook(Runbook(id="nightly", name="Nightly", steps=[make_step("a", "ok")]))
    store.save_runbook(Runbook(id="stuck", name="Stuck", steps=[make_step("a", "hang")]))
    store.save_runbook(Runbook(id="off", name="Off", steps=[make_step("a", "ok")], is_enabled=False))
    store.save_runbook(
        Runbook(id="deploy", name="Deploy", steps=[make_step("a", "ok")], trigger=WebhookTrigger(secret=SECRET))
    )
    store.save_runbook(
        Runbook(
            id="internal-deploy",
            name="Internal deploy",
            steps=[make_step("a", "ok")],
            trigger=WebhookTrigger(secret=SECRET, allowed_ip_range="10.0.0.0/8"),
        )
    )
    store.save_rule(
        AlertRule(
            id="cpu-high",
            name="CPU high",
            metric_name="cpu",
            condition=AlertCondition.GREATER_THAN,
            threshold=90.0,
            actions=[AlertAction(AlertActionType.NOTIFICATION)],
        )
    )
    return Runtime(
        RunspineSettings(retry_base_delay=0, alert_evaluation_interval=3600),
        store=store,
        runner=runner,
        email_sender=RecordingEmailSender(),
    )


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as client:
        yield client


def wait_for_execution(client: TestClient, execution_id: str, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"{PREFIX}/executions/{execution_id}").json()
        if body["status"] != "running" or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def assert_problem(response, status: int, code: str) -> None:
    assert response.status_code == status
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == code
    assert response.json()["status"] == status


# ------------------------------------------------------------------ #
# Health and middleware
# ------------------------------------------------------------------ #


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["triggers_running"] is True
        assert body["alert_engine_running"] is True
        assert body["registered_runbooks"] == 5

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert client.get("/health").headers["X-Request-ID"]


# ------------------------------------------------------------------ #
# Webhooks
# ------------------------------------------------------------------ #


class TestWebhooks:
    def test_signed_request_is_accepted(self, client):
        response = client.post(
            f"{PREFIX}/webhooks/deploy",
            content=BODY,
            headers={"X-Signature-256": sign_payload(SECRET, BODY)},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        execution = wait_for_execution(client, body["execution_id"])
        assert execution["status"] == "succeeded"
        assert execution["trigger_type"] == "webhook"
        assert execution["trigger_info"] == f"Payload size: {len(BODY)}"

    def test_bad_signature(self, client):
        response = client.post(
            f"{PREFIX}/webhooks/deploy",
            content=BODY,
            headers={"X-Signature-256": sign_payload("wrong", BODY)},
        )
        assert_problem(response, 401, "INVALID_SIGNATURE")

    def test_missing_signature(self, client):
        response = client.post(f"{PREFIX}/webhooks/deploy", content=BODY)
        assert_problem(response, 401, "INVALID_SIGNATURE")

    def test_source_outside_allowed_range(self, client):
        # TestClient reports its peer as "testclient", which is no address in 10.0.0.0/8
        response = client.post(
            f"{PREFIX}/webhooks/internal-deploy",
            content=BODY,
            headers={"X-Signature-256": sign_payload(SECRET, BODY)},
        )
        assert_problem(response, 403, "FORBIDDEN_SOURCE")

    def test_unknown_runbook(self, client):
        response = client.post(f"{PREFIX}/webhooks/ghost", content=BODY)
        assert_problem(response, 404, "RUNBOOK_NOT_FOUND")

    def test_manual_runbook_has_no_webhook(self, client):
        response = client.post(
            f"{PREFIX}/webhooks/nightly",
            content=BODY,
            headers={"X-Signature-256": sign_payload(SECRET, BODY)},
        )
        assert_problem(response, 404, "RUNBOOK_NOT_FOUND")


# ------------------------------------------------------------------ #
# Runbooks and executions
# ------------------------------------------------------------------ #


class TestRunbooks:
    def test_list_and_get(self, client):
        ids = [r["id"] for r in client.get(f"{PREFIX}/runbooks").json()]
        assert ids == ["deploy", "internal-deploy", "nightly", "off", "stuck"]

        body = client.get(f"{PREFIX}/runbooks/deploy").json()
        assert body["trigger"]["type"] == "webhook"
        assert "secret" not in body["trigger"]
        assert body["trigger_state"]["state"] == "idle"

    def test_get_unknown(self, client):
        assert_problem(client.get(f"{PREFIX}/runbooks/ghost"), 404, "RUNBOOK_NOT_FOUND")

    def test_fire(self, client):
        response = client.post(f"{PREFIX}/runbooks/nightly/fire", json={"trigger_info": "from test"})

        assert response.status_code == 202
        execution = wait_for_execution(client, response.json()["execution_id"])
        assert execution["status"] == "succeeded"
        assert execution["trigger_info"] == "from test"
        assert execution["step_results"]["a"]["output"] == "done"

    def test_fire_disabled(self, client):
        assert_problem(client.post(f"{PREFIX}/runbooks/off/fire"), 409, "DISABLED_RUNBOOK")

    def test_fire_while_running_then_cancel(self, client):
        first = client.post(f"{PREFIX}/runbooks/stuck/fire").json()
        second = client.post(f"{PREFIX}/runbooks/stuck/fire")
        assert_problem(second, 409, "EXECUTION_IN_PROGRESS")

        response = client.post(f"{PREFIX}/executions/{first['execution_id']}/cancel")

        assert response.status_code == 200
        body = response.json()
        assert body["canceled"] is True
        assert body["execution"]["status"] == "canceled"

        again = client.post(f"{PREFIX}/executions/{first['execution_id']}/cancel").json()
        assert again["canceled"] is False

    def test_reload(self, client):
        body = client.post(f"{PREFIX}/runbooks/nightly/reload").json()
        assert body["runbook_id"] == "nightly"
        assert body["trigger_state"]["trigger_type"] == "manual"


class TestExecutions:
    def test_list_filters(self, client):
        execution_id = client.post(f"{PREFIX}/runbooks/nightly/fire").json()["execution_id"]
        wait_for_execution(client, execution_id)

        listed = client.get(f"{PREFIX}/executions", params={"runbook_id": "nightly"}).json()
        assert [e["id"] for e in listed] == [execution_id]
        assert client.get(f"{PREFIX}/executions", params={"status": "failed"}).json() == []

    def test_unknown(self, client):
        assert_problem(client.get(f"{PREFIX}/executions/exec_missing"), 404, "EXECUTION_NOT_FOUND")
        assert_problem(client.post(f"{PREFIX}/executions/exec_missing/cancel"), 404, "EXECUTION_NOT_FOUND")


# ------------------------------------------------------------------ #
# Alerts and metrics
# ------------------------------------------------------------------ #


class TestAlerts:
    def test_evaluate_after_metric_intake(self, client):
        assert client.post(f"{PREFIX}/metrics", json={"metric_name": "cpu", "value": 97.0}).status_code == 202

        body = client.post(f"{PREFIX}/alerts/rules/cpu-high/evaluate").json()

        assert body["is_triggered"] is True
        assert body["current_value"] == 97.0
        assert client.get(f"{PREFIX}/alerts").json() == []

    def test_manual_fire_acknowledge_resolve(self, client):
        fired = client.post(f"{PREFIX}/alerts/rules/cpu-high/fire", json={"value": 99.5, "message": "drill"})
        assert fired.status_code == 201
        alert_id = fired.json()["id"]
        assert fired.json()["status"] == "firing"

        active = client.get(f"{PREFIX}/alerts", params={"active": True}).json()
        assert [a["id"] for a in active] == [alert_id]

        acked = client.post(f"{PREFIX}/alerts/{alert_id}/acknowledge", json={"message": "on it"}).json()
        assert acked["status"] == "acknowledged"
        assert acked["acknowledgement_message"] == "on it"

        resolved = client.post(f"{PREFIX}/alerts/{alert_id}/resolve").json()
        assert resolved["status"] == "resolved"
        assert client.get(f"{PREFIX}/alerts/{alert_id}").json()["resolved_at"] is not None

        rules = client.get(f"{PREFIX}/alerts/rules").json()
        assert rules[0]["state"]["phase"] == "normal"
        assert rules[0]["state"]["last_resolved_at"] is not None

    def test_list_by_status(self, client):
        client.post(f"{PREFIX}/alerts/rules/cpu-high/fire", json={"value": 95})
        assert len(client.get(f"{PREFIX}/alerts", params={"status": "firing"}).json()) == 1
        assert client.get(f"{PREFIX}/alerts", params={"status": "resolved"}).json() == []

    def test_unknown_rule_and_alert(self, client):
        assert_problem(client.post(f"{PREFIX}/alerts/rules/ghost/evaluate"), 404, "ALERT_RULE_NOT_FOUND")
        assert_problem(
            client.post(f"{PREFIX}/alerts/rules/ghost/fire", json={"value": 1}),
            404,
            "ALERT_RULE_NOT_FOUND",
        )
        assert_problem(client.get(f"{PREFIX}/alerts/alert_missing"), 404, "ALERT_NOT_FOUND")

    def test_metric_validation(self, client):
        response = client.post(f"{PREFIX}/metrics", json={"metric_name": "", "value": 1})
        assert response.status_code == 422
