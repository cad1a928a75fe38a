"""
YAML definitions for runbooks, alert rules and things.

A definitions file holds one or more YAML documents (``---`` separated).
Each document is validated by a pydantic schema and converted to the
domain dataclasses in ``runspine.core.models``.

Example YAML::

    apiVersion: runspine.io/v1
    kind: Runbook
    metadata:
      id: nightly-backup
      name: Nightly backup
    spec:
      trigger:
        type: schedule
        cron_expression: "0 2 * * *"
        timezone_id: Europe/London
      steps:
        - id: snapshot
          name: Snapshot volumes
          thing_id: db-01
          retry: {enable_retry: true, max_retries: 2}
          timeout_seconds: 600
        - id: page
          name: Page on-call
          thing_id: pager
          condition: on_failure
          depends_on: [snapshot]
    ---
    apiVersion: runspine.io/v1
    kind: AlertRule
    metadata:
      id: cpu-high
      name: CPU high
    spec:
      metric_name: cpu
      condition: greater_than
      threshold: 90
      evaluation_window_seconds: 300
      cooldown_period_seconds: 1800
      actions:
        - type: run_runbook
          config: {runbook_id: nightly-backup}

Manifesto:
    Operators should describe runbooks and rules in files they can review
    and version, and find out about a dangling dependency or a broken cron
    expression when the file is loaded, not at 2am when it fires.

Tags:
    definitions, yaml, pydantic, validation, runspine
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from runspine.core.errors import ConfigError, InvalidDefinitionError
from runspine.core.logging import get_logger
from runspine.core.models import (
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    FileWatchTrigger,
    ManualTrigger,
    Runbook,
    RunbookStep,
    ScheduleTrigger,
    StepCondition,
    StepRetry,
    Trigger,
    WebhookTrigger,
)
from runspine.execution.runner import ScriptSpec
from runspine.orchestration.graph import validate_steps
from runspine.storage.protocols import AlertStore, RunbookStore

logger = get_logger(__name__)

API_VERSION = "runspine.io/v1"


# ── Triggers ─────────────────────────────────────────────────────────────


class ScheduleTriggerSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["schedule"]
    cron_expression: str = Field(..., min_length=1)
    timezone_id: str | None = None

    def to_trigger(self) -> Trigger:
        return ScheduleTrigger(cron_expression=self.cron_expression, timezone_id=self.timezone_id)


class WebhookTriggerSpec(BaseModel):
    """``secret`` inline, or ``secret_env`` naming an environment variable."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["webhook"]
    secret: str | None = Field(default=None, repr=False)
    secret_env: str | None = None
    allowed_ip_range: str | None = None

    @model_validator(mode="after")
    def require_secret(self) -> WebhookTriggerSpec:
        if not self.secret and not self.secret_env:
            raise ValueError("webhook trigger requires 'secret' or 'secret_env'")
        return self

    def to_trigger(self) -> Trigger:
        secret = self.secret
        if not secret:
            secret = os.environ.get(self.secret_env or "")
            if not secret:
                raise InvalidDefinitionError(
                    f"Environment variable {self.secret_env} for webhook secret is not set"
                )
        return WebhookTrigger(secret=secret, allowed_ip_range=self.allowed_ip_range)


class FileWatchTriggerSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["file_watch"]
    path: str = Field(..., min_length=1)
    pattern: str = "*"
    include_subdirectories: bool = False
    debounce_seconds: float | None = Field(default=None, ge=0)

    def to_trigger(self) -> Trigger:
        return FileWatchTrigger(
            path=self.path,
            pattern=self.pattern,
            include_subdirectories=self.include_subdirectories,
            debounce=timedelta(seconds=self.debounce_seconds) if self.debounce_seconds else None,
        )


class ManualTriggerSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["manual"] = "manual"

    def to_trigger(self) -> Trigger:
        return ManualTrigger()


TriggerSpec = Annotated[
    ScheduleTriggerSpec | WebhookTriggerSpec | FileWatchTriggerSpec | ManualTriggerSpec,
    Field(discriminator="type"),
]


# ── Runbooks ─────────────────────────────────────────────────────────────


class MetadataSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    enabled: bool = True


class RetrySpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enable_retry: bool = True
    max_retries: int = Field(default=0, ge=0)


class StepSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = ""
    thing_id: str = Field(..., min_length=1)
    profile_id: str = "default"
    parameters: dict[str, Any] = Field(default_factory=dict)
    condition: StepCondition = StepCondition.ON_SUCCESS
    depends_on: list[str] = Field(default_factory=list)
    retry: RetrySpec | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    def to_step(self) -> RunbookStep:
        return RunbookStep(
            step_id=self.id,
            name=self.name or self.id,
            thing_id=self.thing_id,
            profile_id=self.profile_id,
            parameters={k: str(v) for k, v in self.parameters.items()},
            condition=self.condition,
            depends_on=frozenset(self.depends_on),
            retry=(
                StepRetry(enable_retry=self.retry.enable_retry, max_retries=self.retry.max_retries)
                if self.retry
                else None
            ),
            timeout_seconds=self.timeout_seconds,
        )


class RunbookSpecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trigger: TriggerSpec = Field(default_factory=ManualTriggerSpec)
    steps: list[StepSpec] = Field(..., min_length=1)

    @field_validator("steps")
    @classmethod
    def validate_unique_ids(cls, v: list[StepSpec]) -> list[StepSpec]:
        ids = [step.id for step in v]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate step ids: {sorted(duplicates)}")
        return v


class RunbookDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["runspine.io/v1"] = API_VERSION
    kind: Literal["Runbook"]
    metadata: MetadataSpec
    spec: RunbookSpecSection

    def to_runbook(self) -> Runbook:
        steps = [s.to_step() for s in self.spec.steps]
        validate_steps(steps)
        return Runbook(
            id=self.metadata.id,
            name=self.metadata.name,
            description=self.metadata.description,
            is_enabled=self.metadata.enabled,
            steps=steps,
            trigger=self.spec.trigger.to_trigger(),
        )


# ── Alert rules ──────────────────────────────────────────────────────────


class ActionSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: AlertActionType
    config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_config(self) -> ActionSpec:
        required = {
            AlertActionType.EMAIL: "to",
            AlertActionType.WEBHOOK: "url",
            AlertActionType.RUN_RUNBOOK: "runbook_id",
            AlertActionType.SCRIPT: "thing_id",
        }.get(self.type)
        if required and not self.config.get(required):
            raise ValueError(f"{self.type.value} action requires config key '{required}'")
        return self

    def to_action(self) -> AlertAction:
        return AlertAction(type=self.type, config={k: str(v) for k, v in self.config.items()})


class AlertRuleSpecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric_name: str = Field(..., min_length=1)
    condition: AlertCondition
    threshold: float
    evaluation_window_seconds: float = Field(default=300, gt=0)
    cooldown_period_seconds: float = Field(default=900, ge=0)
    severity: AlertSeverity = AlertSeverity.WARNING
    tags: dict[str, str] = Field(default_factory=dict)
    actions: list[ActionSpec] = Field(default_factory=list)


class AlertRuleDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["runspine.io/v1"] = API_VERSION
    kind: Literal["AlertRule"]
    metadata: MetadataSpec
    spec: AlertRuleSpecSection

    def to_rule(self) -> AlertRule:
        return AlertRule(
            id=self.metadata.id,
            name=self.metadata.name,
            description=self.metadata.description,
            is_enabled=self.metadata.enabled,
            metric_name=self.spec.metric_name,
            condition=self.spec.condition,
            threshold=self.spec.threshold,
            evaluation_window=timedelta(seconds=self.spec.evaluation_window_seconds),
            cooldown_period=timedelta(seconds=self.spec.cooldown_period_seconds),
            severity=self.spec.severity,
            tags=dict(self.spec.tags),
            actions=[a.to_action() for a in self.spec.actions],
        )


# ── Things ───────────────────────────────────────────────────────────────


class ThingSpecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    working_dir: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    profiles: dict[str, dict[str, str]] = Field(default_factory=dict)


class ThingDocument(BaseModel):
    """A script the ScriptThingRunner can launch; relative paths resolve against the file."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["runspine.io/v1"] = API_VERSION
    kind: Literal["Thing"]
    metadata: MetadataSpec
    spec: ThingSpecSection

    def to_thing(self, base_dir: Path | None = None) -> ThingDefinition:
        path = Path(self.spec.path)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return ThingDefinition(
            id=self.metadata.id,
            name=self.metadata.name,
            script=ScriptSpec(
                path=str(path),
                args=tuple(self.spec.args),
                working_dir=self.spec.working_dir,
                env=dict(self.spec.env),
                profiles={k: dict(v) for k, v in self.spec.profiles.items()},
            ),
        )


@dataclass(frozen=True)
class ThingDefinition:
    id: str
    name: str
    script: ScriptSpec


# ── Loading ──────────────────────────────────────────────────────────────


@dataclass
class Definitions:
    """Runbooks, alert rules and things parsed from one or more files."""

    runbooks: list[Runbook] = field(default_factory=list)
    rules: list[AlertRule] = field(default_factory=list)
    things: list[ThingDefinition] = field(default_factory=list)

    def extend(self, other: Definitions) -> None:
        self.runbooks.extend(other.runbooks)
        self.rules.extend(other.rules)
        self.things.extend(other.things)

    def apply(self, runbooks: RunbookStore, alerts: AlertStore) -> None:
        """Save every runbook and rule (full update of existing ids)."""
        for runbook in self.runbooks:
            runbooks.save_runbook(runbook)
        for rule in self.rules:
            alerts.save_rule(rule)

    def script_specs(self) -> dict[str, ScriptSpec]:
        return {t.id: t.script for t in self.things}


Definition = Runbook | AlertRule | ThingDefinition


def parse_document(
    data: Any,
    source: str = "<string>",
    base_dir: Path | None = None,
) -> Definition:
    """Validate one YAML document and convert it to a domain object.

    Raises:
        InvalidDefinitionError: schema violation or unknown ``kind``
        CyclicGraphError: the runbook's steps do not form a DAG
    """
    if not isinstance(data, dict):
        raise InvalidDefinitionError(
            f"{source}: expected a mapping, got {type(data).__name__}", source=source
        )

    kind = data.get("kind")
    try:
        match kind:
            case "Runbook":
                return RunbookDocument.model_validate(data).to_runbook()
            case "AlertRule":
                return AlertRuleDocument.model_validate(data).to_rule()
            case "Thing":
                return ThingDocument.model_validate(data).to_thing(base_dir)
            case _:
                raise InvalidDefinitionError(
                    f"{source}: unsupported kind {kind!r} (expected Runbook, AlertRule or Thing)",
                    source=source,
                )
    except ValidationError as e:
        raise InvalidDefinitionError(f"{source}: {e}", source=source, cause=e) from e


def load_definitions_text(
    text: str,
    source: str = "<string>",
    base_dir: Path | None = None,
) -> Definitions:
    try:
        documents = [d for d in yaml.safe_load_all(text) if d is not None]
    except yaml.YAMLError as e:
        raise InvalidDefinitionError(f"Invalid YAML in {source}: {e}", source=source, cause=e) from e

    defs = Definitions()
    seen: set[tuple[str, str]] = set()
    for data in documents:
        item = parse_document(data, source, base_dir)
        key = (type(item).__name__, item.id)
        if key in seen:
            raise InvalidDefinitionError(
                f"{source}: duplicate {key[0]} id {item.id!r}", source=source
            )
        seen.add(key)
        match item:
            case Runbook():
                defs.runbooks.append(item)
            case AlertRule():
                defs.rules.append(item)
            case ThingDefinition():
                defs.things.append(item)
    return defs


def load_definitions_file(path: Path | str) -> Definitions:
    path = Path(path)
    if not path.is_file():
        raise InvalidDefinitionError(f"Definitions file not found: {path}", source=str(path))

    logger.debug("definitions.load", path=str(path))
    defs = load_definitions_text(
        path.read_text(encoding="utf-8"), source=str(path), base_dir=path.parent
    )
    logger.info(
        "definitions.loaded",
        path=str(path),
        runbooks=len(defs.runbooks),
        rules=len(defs.rules),
        things=len(defs.things),
    )
    return defs


def load_definitions_directory(
    directory: Path | str,
    pattern: str = "**/*.yaml",
    ignore_errors: bool = False,
) -> Definitions:
    """Load every definitions file under ``directory``.

    Args:
        directory: Directory to scan
        pattern: Glob pattern for YAML files
        ignore_errors: Skip invalid files (logged) instead of raising
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("definitions.directory_not_found", path=str(directory))
        return Definitions()

    defs = Definitions()
    errors = 0
    for path in sorted(directory.glob(pattern)):
        if not path.is_file():
            continue
        try:
            defs.extend(load_definitions_file(path))
        except ConfigError as e:
            if not ignore_errors:
                raise
            errors += 1
            logger.warning("definitions.file_error", path=str(path), error=e.message)

    logger.info(
        "definitions.directory_loaded",
        directory=str(directory),
        runbooks=len(defs.runbooks),
        rules=len(defs.rules),
        things=len(defs.things),
        errors=errors,
    )
    return defs


__all__ = [
    "API_VERSION",
    "AlertRuleDocument",
    "Definition",
    "Definitions",
    "RunbookDocument",
    "ThingDefinition",
    "ThingDocument",
    "load_definitions_directory",
    "load_definitions_file",
    "load_definitions_text",
    "parse_document",
]
