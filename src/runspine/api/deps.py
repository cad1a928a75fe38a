"""
FastAPI dependency injection.

The app factory stashes the ``Runtime`` and settings on ``app.state``;
routers receive them through these annotated aliases::

    @router.get("/executions/{execution_id}")
    def get_execution(runtime: RuntimeDep, execution_id: str):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from runspine.core.settings import RunspineSettings
from runspine.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_settings(request: Request) -> RunspineSettings:
    return request.app.state.settings


def get_source_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]
SettingsDep = Annotated[RunspineSettings, Depends(get_settings)]
SourceIp = Annotated[str | None, Depends(get_source_ip)]
