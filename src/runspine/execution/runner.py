"""Thing-runner protocol -- the single step-execution backend interface.

Manifesto:
The executor does not care whether a step runs a PowerShell script, an
HTTP call or an in-process function. It hands ``(thing_id, profile_id,
parameters)`` to a ``ThingRunner`` and gets a ``ThingResult`` back.
Cancellation is plain task cancellation.

ARCHITECTURE
────────────
::

    ThingRunner (Protocol)
      └── .execute(thing_id, profile_id, parameters) -> ThingResult

    Implementations:
      HandlerThingRunner  ─ name → async handler (tests, embedded use)
      ScriptThingRunner   ─ thing_id → script, run as a subprocess
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from runspine.core.errors import TransientError
from runspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ThingResult:
    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int | None = None

    @classmethod
    def ok(cls, output: str = "", exit_code: int | None = 0) -> ThingResult:
        return cls(success=True, output=output, exit_code=exit_code)

    @classmethod
    def fail(cls, error: str, output: str = "", exit_code: int | None = 1) -> ThingResult:
        return cls(success=False, output=output, error=error, exit_code=exit_code)


@runtime_checkable
class ThingRunner(Protocol):
    """Executes one step attempt."""

    async def execute(
        self,
        thing_id: str,
        profile_id: str,
        parameters: Mapping[str, str],
    ) -> ThingResult:
        ...


ThingHandler = Callable[[str, Mapping[str, str]], Awaitable[ThingResult]]


class HandlerThingRunner:
    """Injectable ``thing_id`` → async handler registry.

    Example:
        >>> runner = HandlerThingRunner()
        >>>
        >>> @runner.handler("restart-api")
        >>> async def restart(profile_id, parameters):
        ...     return ThingResult.ok("restarted")
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ThingHandler] = {}

    def register(self, thing_id: str, handler: ThingHandler) -> None:
        self._handlers[thing_id] = handler
        logger.debug("thing_runner.registered", thing_id=thing_id)

    def handler(self, thing_id: str) -> Callable[[ThingHandler], ThingHandler]:
        def decorator(func: ThingHandler) -> ThingHandler:
            self.register(thing_id, func)
            return func

        return decorator

    def has(self, thing_id: str) -> bool:
        return thing_id in self._handlers

    async def execute(
        self,
        thing_id: str,
        profile_id: str,
        parameters: Mapping[str, str],
    ) -> ThingResult:
        handler = self._handlers.get(thing_id)
        if handler is None:
            return ThingResult.fail(f"No handler registered for thing '{thing_id}'", exit_code=None)
        return await handler(profile_id, parameters)


@dataclass(frozen=True)
class ScriptSpec:
    """How to launch one Thing. Profiles override args and env."""

    path: str
    args: tuple[str, ...] = ()
    working_dir: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    profiles: Mapping[str, Mapping[str, str]] = field(default_factory=dict)


_LAUNCHERS: dict[str, tuple[str, ...]] = {
    ".py": (sys.executable,),
    ".sh": ("bash",),
    ".ps1": ("pwsh", "-NoProfile", "-File"),
}


class ScriptThingRunner:
    """Runs a Thing's script as a subprocess.

    ``parameters`` are appended as ``--key=value`` arguments; the chosen
    profile's entries are exported as environment variables. Cancelling the
    awaiting task kills the process.
    """

    def __init__(self, things: Mapping[str, ScriptSpec]) -> None:
        self._things = dict(things)

    def command_for(self, spec: ScriptSpec, parameters: Mapping[str, str]) -> list[str]:
        launcher = _LAUNCHERS.get(Path(spec.path).suffix.lower(), ())
        extra = [f"--{key}={value}" for key, value in sorted(parameters.items())]
        return [*launcher, spec.path, *spec.args, *extra]

    async def execute(
        self,
        thing_id: str,
        profile_id: str,
        parameters: Mapping[str, str],
    ) -> ThingResult:
        spec = self._things.get(thing_id)
        if spec is None:
            return ThingResult.fail(f"Unknown thing '{thing_id}'", exit_code=None)
        if not Path(spec.path).exists():
            return ThingResult.fail(f"Script not found: {spec.path}", exit_code=None)

        env = {**os.environ, **spec.env, **spec.profiles.get(profile_id, {})}
        command = self.command_for(spec, parameters)
        cwd = spec.working_dir or str(Path(spec.path).parent)

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransientError(f"Failed to start '{thing_id}': {e}", cause=e) from e

        logger.debug("thing_runner.started", thing_id=thing_id, pid=proc.pid, command=command)

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        error_text = stderr.decode("utf-8", errors="replace")
        if proc.returncode == 0:
            return ThingResult.ok(output, exit_code=0)
        return ThingResult.fail(
            error_text.strip() or f"exit code {proc.returncode}",
            output=output,
            exit_code=proc.returncode,
        )


__all__ = [
    "ThingResult",
    "ThingRunner",
    "ThingHandler",
    "HandlerThingRunner",
    "ScriptSpec",
    "ScriptThingRunner",
]
