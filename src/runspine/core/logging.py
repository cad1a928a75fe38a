"""
Runspine Logging - Structured logging for every runspine component.

Manifesto:
    Trigger fires, step attempts, and alert transitions happen on background
    tasks where nobody is watching a terminal.  When something misfires at
    3am the only evidence is the log stream, so every event must be
    structured, correlated, and machine-readable.

    - **Structures:** JSON output for log aggregation
    - **Correlates:** execution_id / runbook_id / rule_id propagation
    - **Flexes:** Console output for development, JSON for production

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="runspine")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars (LogContext bindings)
          3. add_log_level
          4. service metadata
          5. ECS-compatible field names (JSON only)
          6. JSONRenderer | ConsoleRenderer

Examples:
    >>> from runspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("trigger.fired", runbook_id="rb-1", trigger_type="schedule")

Tags:
    logging, structlog, observability, ecs, json-logging, runspine
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Store service name for metadata
_SERVICE_NAME = "runspine"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")

    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")

    return event_dict


class _StdStreamLoggerFactory:
    """Build PrintLoggers on whatever ``sys.<name>`` is at call time.

    Test runners and CliRunner swap and close the standard streams, so the
    stream is looked up per logger instead of captured at configure time.
    """

    def __init__(self, name: str) -> None:
        self._stream_name = name

    def __call__(self, *args: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(getattr(sys, self._stream_name))


class _StdStreamHandler(logging.StreamHandler):
    """Stdlib counterpart of ``_StdStreamLoggerFactory``."""

    def __init__(self, name: str) -> None:
        self._stream_name = name
        super().__init__()

    @property
    def stream(self) -> TextIO:  # type: ignore[override]
        return getattr(sys, self._stream_name)

    @stream.setter
    def stream(self, value: TextIO) -> None:
        pass


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "runspine",
    add_timestamp: bool = True,
    stream: TextIO | Literal["stdout", "stderr"] = "stdout",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
        stream: "stdout"/"stderr" (resolved on every new logger) or an open file
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if isinstance(stream, str):
        logger_factory: Any = _StdStreamLoggerFactory(stream)
        handler: logging.Handler = _StdStreamHandler(stream)
        current: TextIO = getattr(sys, stream)
        # a cached logger would pin a stream that may be closed later
        cache = False
    else:
        logger_factory = structlog.PrintLoggerFactory(stream)
        handler = logging.StreamHandler(stream)
        current = stream
        cache = True

    if json_format is None:
        json_format = not current.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=cache,
    )

    # uvicorn and httpx log through the stdlib
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(execution_id="ex-1", runbook_id="rb-1"):
            logger.info("step.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
