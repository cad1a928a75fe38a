"""
CLI output helpers.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from runspine.core.errors import RunspineError

console = Console()
err_console = Console(stderr=True)


def fail(error: RunspineError | str, code: str = "ERROR") -> typer.Exit:
    """Print an error line and return the ``typer.Exit`` to raise."""
    if isinstance(error, RunspineError):
        message, code = error.message, error.code
    else:
        message = error
    err_console.print(f"[bold red]Error[/bold red] ({code}): {escape(message)}")
    return typer.Exit(code=1)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    table = Table(title=title, show_lines=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row))
    console.print(table)


_STATUS_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "canceled": "yellow",
    "skipped": "dim",
    "running": "cyan",
}


def styled_status(status: str) -> str:
    style = _STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status
