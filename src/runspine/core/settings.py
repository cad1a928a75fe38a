"""Runtime settings for runspine.

Every background loop (schedule timers, file-watch pollers, the alert
evaluation loop) and every outbound collaborator (SMTP, webhook actions)
reads its knobs from one validated settings object.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A typo in a poll interval should fail at startup, not at 3am.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads ``RUNSPINE_*`` env vars and ``.env`` files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from runspine.core.settings import RunspineSettings
    >>> settings = RunspineSettings(alert_evaluation_interval=5.0)
    >>> settings.retry_base_delay
    5.0

Tags:
    settings, configuration, pydantic, environment, runspine
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConcurrencyPolicy(str, Enum):
    """What to do when a runbook fires while an execution is in flight."""

    REJECT = "reject"
    QUEUE = "queue"


class RunspineSettings(BaseSettings):
    """Settings shared by every runspine component.

    Fields
    ──────
    host / port              : Bind address for the HTTP surface
    log_level / log_json     : Structlog configuration (None = auto by tty)
    definitions_dir          : Directory of runbook / alert-rule YAML files
    alert_evaluation_interval: Seconds between AlertEngine evaluation passes
    file_watch_poll_interval : Seconds between file-watch directory scans
    retry_*                  : Default exponential backoff between attempts
    concurrency_policy       : reject | queue a second firing of a runbook
    webhook_signature_header : Header carrying ``sha256=<hex>``
    smtp_*                   : Email action transport
    http_action_timeout      : Timeout for Webhook actions
    """

    model_config = SettingsConfigDict(
        env_prefix="RUNSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Network ──────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = "/api/v1"

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Definitions ──────────────────────────────────────────────
    definitions_dir: Path | None = Field(
        default=None,
        description="Directory scanned for runbook and alert-rule YAML files",
    )

    # ── Loops ────────────────────────────────────────────────────
    alert_evaluation_interval: float = Field(default=15.0, gt=0)
    file_watch_poll_interval: float = Field(default=1.0, gt=0)

    # ── Execution ────────────────────────────────────────────────
    retry_base_delay: float = Field(default=5.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay: float = Field(default=300.0, ge=0)
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.REJECT

    # ── Webhooks ─────────────────────────────────────────────────
    webhook_signature_header: str = "X-Signature-256"

    # ── Actions ──────────────────────────────────────────────────
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_from: str = "runspine@localhost"
    http_action_timeout: float = Field(default=10.0, gt=0)


def get_settings() -> RunspineSettings:
    """Build settings from the environment (and ``.env``)."""
    return RunspineSettings()


__all__ = ["ConcurrencyPolicy", "RunspineSettings", "get_settings"]
