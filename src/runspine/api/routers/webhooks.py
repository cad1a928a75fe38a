"""Webhook intake.

External systems (CI, monitoring, ticketing) fire webhook-triggered
runbooks by POSTing a signed body::

    POST /webhooks/{runbook_id}
    X-Signature-256: sha256=<hex(HMAC-SHA256(secret, raw_body))>

The signature is computed over the raw bytes, so the body is never parsed.
202 on fire; 401 bad signature, 403 source outside the allowed range,
404 unknown (or non-webhook) runbook, 409 disabled or already running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from runspine.api.deps import RuntimeDep, SettingsDep, SourceIp
from runspine.api.middleware.errors import problem_response, status_for_error_code
from runspine.api.schemas import ProblemDetail, TriggerResponse
from runspine.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks")

_PROBLEMS = {code: {"model": ProblemDetail} for code in (401, 403, 404, 409)}


@router.post("/{runbook_id}", status_code=202, response_model=TriggerResponse, responses=_PROBLEMS)
async def receive_webhook(
    runbook_id: str,
    request: Request,
    runtime: RuntimeDep,
    settings: SettingsDep,
    source_ip: SourceIp,
):
    """Verify the signature (and source range) and fire the runbook."""
    body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    result = await runtime.triggers.handle_webhook(runbook_id, body, signature, source_ip)
    if not result.success:
        return problem_response(
            status=status_for_error_code(result.error_code),
            title=result.error_message or "Webhook rejected",
            instance=str(request.url.path),
            code=result.error_code,
        )
    return TriggerResponse.from_result(result)
