"""
Root Typer application for the runspine CLI.

Commands::

    runspine validate PATH            Check runbook / alert-rule / thing YAML
    runspine cron-next EXPR           Preview the next fire times of a cron expression
    runspine sign SECRET              Compute a webhook signature header value
    runspine run RUNBOOK_ID           Execute a runbook once, in the foreground
    runspine serve                    Start the HTTP surface and background triggers
"""

from __future__ import annotations

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path

import typer

from runspine import __version__
from runspine.cli.utils import console, fail, print_json, print_table, styled_status
from runspine.core.errors import ConfigError, RunspineError
from runspine.core.logging import configure_logging
from runspine.core.settings import RunspineSettings
from runspine.definitions import Definitions, load_definitions_directory, load_definitions_file

app = typer.Typer(
    name="runspine",
    help="runspine: triggered runbooks and metric alerts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"runspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr."),
) -> None:
    """runspine CLI: validate definitions, preview schedules, sign webhooks, serve."""
    # stdout carries command output; logs go to stderr until serve reconfigures
    configure_logging(level="INFO" if verbose else "WARNING", json_format=False, stream="stderr")


def _load(path: Path) -> Definitions:
    if path.is_dir():
        return load_definitions_directory(path)
    return load_definitions_file(path)


# ── validate ─────────────────────────────────────────────────────────────


@app.command("validate")
def validate(
    path: Path = typer.Argument(..., help="Definitions file or directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate definitions: schema, step graphs and cron expressions."""
    from runspine.core.models import ScheduleTrigger
    from runspine.triggers.cron import CronSchedule

    try:
        defs = _load(path)
        for runbook in defs.runbooks:
            if isinstance(runbook.trigger, ScheduleTrigger):
                CronSchedule.parse(runbook.trigger.cron_expression, runbook.trigger.timezone_id)
    except ConfigError as e:
        raise fail(e) from e

    if json_out:
        print_json(
            {
                "runbooks": [r.id for r in defs.runbooks],
                "rules": [r.id for r in defs.rules],
                "things": [t.id for t in defs.things],
            }
        )
        return

    print_table(
        "Runbooks",
        ["id", "name", "trigger", "steps", "enabled"],
        (
            (r.id, r.name, r.trigger.trigger_type.value, len(r.steps), r.is_enabled)
            for r in defs.runbooks
        ),
    )
    if defs.rules:
        print_table(
            "Alert rules",
            ["id", "metric", "condition", "threshold", "actions"],
            (
                (r.id, r.metric_name, r.condition.value, r.threshold, len(r.actions))
                for r in defs.rules
            ),
        )
    console.print(
        f"[bold green]OK[/bold green] {len(defs.runbooks)} runbook(s), "
        f"{len(defs.rules)} rule(s), {len(defs.things)} thing(s)"
    )


# ── cron-next ────────────────────────────────────────────────────────────


@app.command("cron-next")
def cron_next(
    expression: str = typer.Argument(..., help='Five-field cron expression, e.g. "0 2 * * *"'),
    timezone: str | None = typer.Option(None, "--timezone", "-z", help="IANA timezone id"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100),
    after: datetime | None = typer.Option(None, "--after", help="Start instant (UTC if naive)"),
) -> None:
    """Print the next fire times of a cron expression (UTC)."""
    from runspine.triggers.cron import CronSchedule

    try:
        schedule = CronSchedule.parse(expression, timezone)
    except RunspineError as e:
        raise fail(e) from e

    start = after or datetime.now(UTC)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    for instant in schedule.upcoming(start, count):
        typer.echo(instant.isoformat())


# ── sign ─────────────────────────────────────────────────────────────────


@app.command("sign")
def sign(
    secret: str = typer.Argument(..., help="Webhook secret"),
    data: str | None = typer.Option(None, "--data", "-d", help="Payload text"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Payload file (raw bytes)"),
) -> None:
    """Print the ``sha256=<hex>`` signature of a payload (stdin by default)."""
    from runspine.triggers.webhook import sign_payload

    if data is not None and file is not None:
        raise fail("Use either --data or --file, not both")
    if file is not None:
        payload = file.read_bytes()
    elif data is not None:
        payload = data.encode("utf-8")
    else:
        payload = sys.stdin.buffer.read()
    typer.echo(sign_payload(secret, payload))


# ── run ──────────────────────────────────────────────────────────────────


@app.command("run")
def run(
    runbook_id: str = typer.Argument(..., help="Runbook to execute"),
    definitions: Path = typer.Option(..., "--definitions", "-D", help="Definitions file or directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Execute one runbook in the foreground and print its step results."""
    from runspine.core.models import ExecutionStatus
    from runspine.runtime import Runtime

    try:
        defs = _load(definitions)
    except ConfigError as e:
        raise fail(e) from e

    runtime = Runtime.from_definitions(defs, RunspineSettings())
    runbook = runtime.store.get_runbook(runbook_id)
    if runbook is None:
        raise fail(f"Runbook not found: {runbook_id}", "RUNBOOK_NOT_FOUND")

    try:
        execution = asyncio.run(runtime.executor.execute(runbook, trigger_info="cli"))
    except RunspineError as e:
        raise fail(e) from e

    if json_out:
        print_json(execution.to_dict())
    else:
        print_table(
            f"{runbook.name} ({execution.id})",
            ["step", "status", "attempts", "exit", "error"],
            (
                (sid, styled_status(r.status.value), r.attempts, r.exit_code, r.error)
                for sid, r in execution.step_results.items()
            ),
        )
        console.print(f"Execution {styled_status(execution.status.value)}")
    if execution.status is not ExecutionStatus.SUCCEEDED:
        raise typer.Exit(code=1)


# ── serve ────────────────────────────────────────────────────────────────


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    definitions: Path | None = typer.Option(None, "--definitions", "-D", help="Definitions directory"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Start the HTTP API together with schedule, file-watch and alert loops."""
    import uvicorn

    from runspine.api import create_app
    from runspine.runtime import Runtime

    overrides = {
        k: v
        for k, v in {
            "host": host,
            "port": port,
            "definitions_dir": definitions,
            "log_level": log_level,
        }.items()
        if v is not None
    }
    settings = RunspineSettings(**overrides)
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    try:
        runtime = Runtime.from_settings(settings)
    except ConfigError as e:
        raise fail(e) from e

    console.print(f"[bold green]Starting runspine[/bold green] on {settings.host}:{settings.port}")
    uvicorn.run(
        create_app(runtime),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
