"""Runspine HTTP surface (FastAPI).

Architecture::

    app.py          create_app(runtime) + lifespan
    deps.py         RuntimeDep / SettingsDep / SourceIp
    schemas.py      Request bodies, TriggerResponse, ProblemDetail
    middleware/     Request-ID, RFC 7807 error mapping
    routers/        webhooks, runbooks, executions, alerts
"""

from runspine.api.app import create_app

__all__ = ["create_app"]
