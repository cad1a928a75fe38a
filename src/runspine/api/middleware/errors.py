"""
Error handlers: map runspine error codes to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from runspine.api.schemas import ProblemDetail
from runspine.core.errors import RunspineError
from runspine.core.logging import get_logger

logger = get_logger(__name__)

# ── Error code → HTTP status mapping ─────────────────────────────────────

ERROR_CODE_TO_STATUS: dict[str, int] = {
    "RUNBOOK_NOT_FOUND": 404,
    "EXECUTION_NOT_FOUND": 404,
    "ALERT_RULE_NOT_FOUND": 404,
    "ALERT_NOT_FOUND": 404,
    "UNAUTHORIZED": 401,
    "INVALID_SIGNATURE": 401,
    "FORBIDDEN_SOURCE": 403,
    "DISABLED_RUNBOOK": 409,
    "EXECUTION_IN_PROGRESS": 409,
    "INVALID_CONFIG": 422,
    "INVALID_DEFINITION": 422,
    "CYCLIC_GRAPH": 422,
    "INVALID_CRON_EXPRESSION": 422,
    "PATH_NOT_FOUND": 422,
    "TRANSIENT": 503,
    "STEP_TIMEOUT": 503,
    "INTERNAL": 500,
}


def status_for_error_code(code: str | None) -> int:
    """Resolve an error code to HTTP status, defaulting to 500."""
    return ERROR_CODE_TO_STATUS.get(code or "INTERNAL", 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, code=code)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
    )


async def runspine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """RunspineError raised by an endpoint → problem response keyed by its code."""
    assert isinstance(exc, RunspineError)
    return problem_response(
        status=status_for_error_code(exc.code),
        title=exc.message,
        instance=str(request.url.path),
        code=exc.code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: 500 with ProblemDetail."""
    logger.exception("api.unhandled_error", path=str(request.url.path), error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url.path),
        code="INTERNAL",
    )
