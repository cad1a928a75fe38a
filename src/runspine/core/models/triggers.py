"""Trigger variants.

A runbook carries exactly one trigger. Triggers form a closed set of frozen
dataclasses discriminated by ``trigger_type``; consumers ``match`` on the
class and must handle every variant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, ClassVar


class TriggerType(str, Enum):
    """How a runbook execution was started."""

    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    FILE_WATCH = "file_watch"
    MANUAL = "manual"


@dataclass(frozen=True)
class ScheduleTrigger:
    """Five-field cron expression evaluated in ``timezone_id`` (UTC if None)."""

    trigger_type: ClassVar[TriggerType] = TriggerType.SCHEDULE

    cron_expression: str
    timezone_id: str | None = None


@dataclass(frozen=True)
class WebhookTrigger:
    """HMAC-SHA256 signed HTTP call, optionally restricted to a CIDR range."""

    trigger_type: ClassVar[TriggerType] = TriggerType.WEBHOOK

    secret: str = field(repr=False)
    allowed_ip_range: str | None = None


@dataclass(frozen=True)
class FileWatchTrigger:
    """Created / modified / deleted files under ``path`` matching ``pattern``."""

    trigger_type: ClassVar[TriggerType] = TriggerType.FILE_WATCH

    path: str
    pattern: str = "*"
    include_subdirectories: bool = False
    debounce: timedelta | None = None


@dataclass(frozen=True)
class ManualTrigger:
    """Fired only on demand."""

    trigger_type: ClassVar[TriggerType] = TriggerType.MANUAL


Trigger = ScheduleTrigger | WebhookTrigger | FileWatchTrigger | ManualTrigger


def trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    """Serialize a trigger for logs and API responses (secrets are omitted)."""
    match trigger:
        case ScheduleTrigger(cron_expression=expr, timezone_id=tz):
            return {"type": trigger.trigger_type.value, "cron_expression": expr, "timezone_id": tz}
        case WebhookTrigger(allowed_ip_range=cidr):
            return {"type": trigger.trigger_type.value, "allowed_ip_range": cidr}
        case FileWatchTrigger():
            return {
                "type": trigger.trigger_type.value,
                "path": trigger.path,
                "pattern": trigger.pattern,
                "include_subdirectories": trigger.include_subdirectories,
                "debounce_seconds": (
                    trigger.debounce.total_seconds() if trigger.debounce else None
                ),
            }
        case ManualTrigger():
            return {"type": trigger.trigger_type.value}
        case _:
            raise TypeError(f"Unknown trigger variant: {type(trigger).__name__}")


__all__ = [
    "TriggerType",
    "ScheduleTrigger",
    "WebhookTrigger",
    "FileWatchTrigger",
    "ManualTrigger",
    "Trigger",
    "trigger_to_dict",
]
