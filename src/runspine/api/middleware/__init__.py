"""HTTP middleware and exception handlers."""

from runspine.api.middleware.errors import (
    problem_response,
    runspine_error_handler,
    status_for_error_code,
    unhandled_exception_handler,
)
from runspine.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "problem_response",
    "runspine_error_handler",
    "status_for_error_code",
    "unhandled_exception_handler",
]
