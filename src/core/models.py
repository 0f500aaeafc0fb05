# src/core/models.py - v1
"""Shared Pydantic records used across modules.

Pipelines, executions, artifacts and approval requests are stored as flat
records keyed by identifiers. Nothing holds a reference to a parent object:
an Execution names its pipeline by (name, version), a StageRecord names its
stage by index, and so on. Every record round-trips through JSON.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagegate.core.ids import generate_execution_id, generate_request_id, utcnow

ActionType = Literal["source", "build", "deploy", "manual_approval"]
ActionStatus = Literal["pending", "succeeded", "failed"]
StageStatus = Literal["running", "suspended", "succeeded", "failed", "cancelled"]
ExecutionStatus = Literal[
    "queued", "running", "suspended", "succeeded", "failed", "cancelled"
]
ApprovalState = Literal[
    "opened", "pending", "approved", "rejected", "expired", "superseded"
]
SupersedePolicy = Literal["supersede", "queue"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed", "cancelled"})
IN_FLIGHT_STATUSES: frozenset[str] = frozenset({"queued", "running", "suspended"})
OPEN_APPROVAL_STATES: frozenset[str] = frozenset({"opened", "pending"})


# === PERMISSIONS ===


class PermissionGrant(BaseModel):
    """Capability statement: principal may perform ``actions`` on ``resources``.

    Resource entries are glob patterns (``artifact:*/BuildOutput``).
    """

    model_config = ConfigDict(frozen=True)

    principal: str
    actions: tuple[str, ...]
    resources: tuple[str, ...]

    def capabilities(self) -> set[tuple[str, str]]:
        """Expand into (verb, resource-pattern) pairs."""
        return {(verb, res) for verb in self.actions for res in self.resources}


# === PIPELINE DEFINITION ===


class ActionDeclaration(BaseModel):
    """One unit of work inside a stage."""

    name: str
    type: ActionType
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    configuration: dict[str, Any] = Field(default_factory=dict)
    grants: list[PermissionGrant] = Field(default_factory=list)


class StageDeclaration(BaseModel):
    name: str
    actions: list[ActionDeclaration]


class SourceSpec(BaseModel):
    """Repository and branch whose change events start the pipeline."""

    repository: str
    branch: str = "main"


class PipelineDefinition(BaseModel):
    """Operator-authored pipeline configuration."""

    name: str
    source: SourceSpec
    stages: list[StageDeclaration]
    supersede_policy: SupersedePolicy | None = None

    def fingerprint(self) -> str:
        """SHA-256 over the canonical JSON form of the definition."""
        return hashlib.sha256(
            self.model_dump_json().encode("utf-8")
        ).hexdigest()

    def find_action(self, action_name: str) -> tuple[int, ActionDeclaration] | None:
        """Return (stage_index, declaration) for an action name."""
        for idx, stage in enumerate(self.stages):
            for action in stage.actions:
                if action.name == action_name:
                    return idx, action
        return None


class Pipeline(BaseModel):
    """Stored, immutable version of a PipelineDefinition."""

    name: str
    version: int
    definition: PipelineDefinition
    fingerprint: str
    created_at: datetime = Field(default_factory=utcnow)


# === TRIGGER ===


class TriggerEvent(BaseModel):
    """Inbound change notification: {repository, branch, commitRef}."""

    repository: str
    branch: str
    commit_ref: str
    pusher: str | None = None
    received_at: datetime = Field(default_factory=utcnow)

    @field_validator("branch")
    @classmethod
    def strip_ref_prefix(cls, v: str) -> str:
        return v.removeprefix("refs/heads/")


# === ARTIFACTS ===


class ArtifactRef(BaseModel):
    """Reference to a written artifact, addressed by (execution_id, name)."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    name: str
    digest: str
    size: int
    uri: str


class ArtifactPath(BaseModel):
    """A file inside a zipped artifact, written ``Artifact::path/in/zip``."""

    model_config = ConfigDict(frozen=True)

    artifact: str
    path: str

    @classmethod
    def parse(cls, value: str) -> ArtifactPath:
        """Parse ``BuildOutput::Dev.template.json`` or ``build-out/Dev.template.json``."""
        if "::" in value:
            artifact, _, path = value.partition("::")
        else:
            artifact, _, path = value.partition("/")
        if not artifact or not path:
            raise ValueError(f"Invalid artifact path: {value!r}")
        return cls(artifact=artifact, path=path)

    def __str__(self) -> str:
        return f"{self.artifact}::{self.path}"


# === EXECUTION ===


class ActionResult(BaseModel):
    name: str
    type: ActionType
    status: ActionStatus = "pending"
    outputs: dict[str, ArtifactRef] = Field(default_factory=dict)
    error_type: str | None = None
    error: str | None = None
    approval_id: str | None = None
    diagnostics: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class StageRecord(BaseModel):
    name: str
    index: int
    status: StageStatus = "running"
    actions: dict[str, ActionResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None


class FailureInfo(BaseModel):
    """Where and why an execution stopped."""

    stage: str
    action: str | None = None
    error_type: str
    message: str


class Execution(BaseModel):
    """One run of a pipeline version, triggered by one source event."""

    id: str = Field(default_factory=generate_execution_id)
    pipeline_name: str
    pipeline_version: int
    trigger: TriggerEvent
    status: ExecutionStatus = "running"
    current_stage: int = 0
    stages: list[StageRecord] = Field(default_factory=list)
    failure: FailureInfo | None = None
    cancel_requested: bool = False
    cancel_reason: str | None = None
    superseded_by: str | None = None
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    # Optimistic concurrency counter, bumped by the state store on save.
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def stage_record(self, index: int) -> StageRecord | None:
        for record in self.stages:
            if record.index == index:
                return record
        return None

    def move_to_stage(self, index: int) -> None:
        """Move the stage cursor. The cursor never moves backwards."""
        if index < self.current_stage:
            raise ValueError(
                f"Stage cursor cannot move backwards ({self.current_stage} -> {index})"
            )
        self.current_stage = index

    def artifact_refs(self) -> dict[str, ArtifactRef]:
        """All artifacts produced so far, keyed by name."""
        refs: dict[str, ArtifactRef] = {}
        for record in self.stages:
            for result in record.actions.values():
                refs.update(result.outputs)
        return refs


# === APPROVAL ===


class ApprovalRequest(BaseModel):
    """Pending human decision for one execution's approval action."""

    id: str = Field(default_factory=generate_request_id)
    execution_id: str
    pipeline_name: str
    stage: str
    action: str
    topic: str
    context: str = ""
    review_url: str | None = None
    state: ApprovalState = "opened"
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None
    comment: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state in OPEN_APPROVAL_STATES


# === AUDIT ===


class AuditRecord(BaseModel):
    """One stage transition or approval decision, appended per execution."""

    execution_id: str
    pipeline_name: str
    stage: str
    event: str
    outcome: str
    action: str | None = None
    actor: str | None = None
    detail: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
