"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers and the
lifespan that starts and stops the ``Runtime`` (trigger sources, alert
loop) together with the server.

Tags:
    runspine, api, app-factory, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from runspine import __version__
from runspine.api.middleware.errors import runspine_error_handler, unhandled_exception_handler
from runspine.api.middleware.request_id import RequestIDMiddleware
from runspine.api.routers import alerts, executions, runbooks, webhooks
from runspine.core.errors import RunspineError
from runspine.core.logging import get_logger
from runspine.core.settings import RunspineSettings
from runspine.runtime import Runtime

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the runtime with the server; stop it on shutdown."""
    runtime: Runtime = app.state.runtime
    logger.info("api.starting", version=app.version)
    await runtime.start()
    try:
        yield
    finally:
        await runtime.stop()
        logger.info("api.stopped")


def create_app(
    runtime: Runtime | None = None,
    *,
    settings: RunspineSettings | None = None,
) -> FastAPI:
    """Build a fully-configured FastAPI application.

    Args:
        runtime: Pre-built runtime (tests pass one with fakes). Built from
            ``settings.definitions_dir`` when omitted.
        settings: Defaults to the runtime's settings.
    """
    if runtime is None:
        runtime = Runtime.from_settings(settings)
    settings = settings or runtime.settings

    app = FastAPI(
        title="runspine",
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.runtime = runtime
    app.state.settings = settings

    # ── Middleware ───────────────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(RunspineError, runspine_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    prefix = settings.api_prefix
    app.include_router(webhooks.router, prefix=prefix, tags=["webhooks"])
    app.include_router(runbooks.router, prefix=prefix, tags=["runbooks"])
    app.include_router(executions.router, prefix=prefix, tags=["executions"])
    app.include_router(alerts.router, prefix=prefix, tags=["alerts"])
    app.include_router(alerts.metrics_router, prefix=prefix, tags=["metrics"])

    @app.get("/health", tags=["health"])
    def health() -> dict[str, Any]:
        return {
            "status": "ok" if runtime.is_started else "starting",
            "version": __version__,
            "triggers_running": runtime.triggers.is_running,
            "alert_engine_running": runtime.alerts.is_running,
            "registered_runbooks": len(runtime.triggers.registered_runbooks()),
            "active_file_watchers": len(runtime.triggers.active_file_watchers()),
        }

    return app


__all__ = ["create_app", "lifespan"]
