# src/pipeline/actions/manual_approval.py - v1
"""Manual approval action.

First entry opens an ApprovalRequest and suspends the stage. Every later
entry (after a decision, an expiry sweep or a restart) reads the request
back and maps its state onto the action result.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from stagegate.core.errors import ApprovalExpired, ApprovalRejected, PipelineError
from stagegate.core.models import ActionDeclaration, PipelineDefinition
from stagegate.pipeline.plugin_kit.base_action import BaseActionExecutor
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionOutcome

logger = logging.getLogger(__name__)


class ApprovalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str
    timeout_s: int | None = Field(default=None, gt=0)
    additional_information: str = ""
    review_url: str | None = None


class ManualApprovalAction(BaseActionExecutor):
    @property
    def action_type(self) -> str:
        return "manual_approval"

    @property
    def description(self) -> str:
        return "Suspend the execution until a reviewer approves or rejects"

    @property
    def config_schema(self) -> type[BaseModel]:
        return ApprovalConfig

    def validate_declaration(
        self, definition: PipelineDefinition, stage_name: str, action: ActionDeclaration
    ) -> list[str]:
        errors = super().validate_declaration(definition, stage_name, action)
        if action.outputs:
            errors.append(f"{stage_name}/{action.name}: approval actions produce no outputs")
        return errors

    async def execute(self, context: ActionContext) -> ActionOutcome:
        gate = context.services.gate
        previous = context.previous

        if previous is not None and previous.approval_id:
            request = await gate.get(previous.approval_id)
            if request.state == "approved":
                return ActionOutcome(
                    approval_id=request.id,
                    diagnostics=f"approved by {request.decided_by}",
                )
            if request.state == "rejected":
                detail = f" ({request.comment})" if request.comment else ""
                raise ApprovalRejected(f"Rejected by {request.decided_by}{detail}")
            if request.state == "expired":
                raise ApprovalExpired(
                    f"No decision before {request.expires_at.isoformat() if request.expires_at else 'timeout'}"
                )
            if request.state == "superseded":
                raise PipelineError(f"Approval request {request.id} was superseded")
            return ActionOutcome(status="suspended", approval_id=request.id)

        config = ApprovalConfig.model_validate(context.action.configuration)
        review_url = config.review_url
        if review_url is None and context.services.console_url is not None:
            review_url = context.services.console_url(
                context.definition.name, context.execution.id
            )

        request = await gate.open(
            context.execution,
            context.stage.name,
            context.action.name,
            configuration=config.model_dump(exclude_none=True),
            context=_review_context(context, config.additional_information),
            review_url=review_url,
            principal=context.principal,
        )
        return ActionOutcome(status="suspended", approval_id=request.id)


def _review_context(context: ActionContext, additional_information: str) -> str:
    """Reviewer-facing text: free-form note plus the prior stage's outputs."""
    lines: list[str] = []
    if additional_information:
        lines += [additional_information, ""]

    trigger = context.execution.trigger
    lines.append(f"Commit: {trigger.commit_ref} on {trigger.repository}:{trigger.branch}")

    prior = context.execution.stage_record(context.stage_index - 1)
    if prior is not None:
        lines.append(f"Previous stage: {prior.name} ({prior.status})")
        for result in prior.actions.values():
            for name, ref in result.outputs.items():
                lines.append(f"  {result.name} -> {name} sha256:{ref.digest[:12]} {ref.uri}")
    return "\n".join(lines)
