# src/deploy/models.py - v1
"""Deployment records: observed environment state, change sets, results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from stagegate.core.ids import utcnow

ChangeAction = Literal["add", "modify", "remove"]


class ResourceChange(BaseModel):
    """One resource-level difference between observed and desired state."""

    action: ChangeAction
    logical_id: str
    resource_type: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class EnvironmentState(BaseModel):
    """What a deployment target currently holds for one environment."""

    environment: str
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    template_ref: str | None = None
    template_digest: str | None = None
    execution_id: str | None = None
    revision: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class DeployResult(BaseModel):
    """Outcome of one ``DeploymentExecutor.apply`` call.

    Serialized as the deploy action's exported artifact, so the audit trail
    records which template (by reference and digest) an environment received.
    """

    environment: str
    template_ref: str
    template_digest: str
    changes: list[ResourceChange] = Field(default_factory=list)
    no_op: bool = False
    revision: int = 0
    execution_id: str | None = None
    applied_at: datetime = Field(default_factory=utcnow)
