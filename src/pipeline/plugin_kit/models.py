# src/pipeline/plugin_kit/models.py - v1
"""Action plugin models: ActionServices, ActionContext, ActionOutcome."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Literal

from pydantic import BaseModel, Field

from stagegate.core.models import (
    ActionDeclaration,
    ActionResult,
    ArtifactRef,
    Execution,
    PipelineDefinition,
    StageDeclaration,
)

if TYPE_CHECKING:
    from stagegate.approval.gate import ApprovalGate
    from stagegate.build.runner import BuildRunner
    from stagegate.build.sources import BaseSourceProvider
    from stagegate.deploy.executor import DeploymentExecutor
    from stagegate.security.permissions import ScopedPrincipal
    from stagegate.security.scoped_store import ScopedArtifactStore


@dataclass
class ActionServices:
    """Collaborators shared by every action executor."""

    sources: BaseSourceProvider
    builder: BuildRunner
    deployer: DeploymentExecutor
    gate: ApprovalGate
    # (pipeline_name, execution_id) -> console/review URL
    console_url: Callable[[str, str], str] | None = None


@dataclass
class ActionContext:
    """Everything one action invocation may see.

    ``execution`` is a read-only snapshot; actions report back through
    their ActionOutcome and never mutate it.
    """

    execution: Execution
    definition: PipelineDefinition
    stage: StageDeclaration
    stage_index: int
    action: ActionDeclaration
    artifacts: ScopedArtifactStore
    principal: ScopedPrincipal
    services: ActionServices
    previous: ActionResult | None = None


class ActionOutcome(BaseModel):
    """Standard return type for BaseActionExecutor.execute()."""

    status: Literal["succeeded", "suspended"] = "succeeded"
    outputs: dict[str, ArtifactRef] = Field(default_factory=dict)
    approval_id: str | None = None
    diagnostics: str | None = None
