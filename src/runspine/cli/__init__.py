"""Runspine command-line interface (Typer + Rich)."""

from runspine.cli.app import app

__all__ = ["app"]
