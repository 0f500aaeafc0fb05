# src/pipeline/actions/deploy.py - v1
"""Deploy action: apply an environment template from the build output.

The action's single optional output is a deployment record naming the
environment, the template reference and the template digest. The record
is deterministic so a re-run of the same stage writes the same bytes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagegate.core.models import ActionDeclaration, ArtifactPath, PipelineDefinition
from stagegate.pipeline.plugin_kit.base_action import BaseActionExecutor
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionOutcome

logger = logging.getLogger(__name__)


class DeployConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    environment: str
    template_path: str
    stack_name: str | None = None
    parameter_overrides: dict[str, Any] = Field(default_factory=dict)

    @field_validator("template_path")
    @classmethod
    def parse_path(cls, v: str) -> str:
        return str(ArtifactPath.parse(v))


class DeployAction(BaseActionExecutor):
    @property
    def action_type(self) -> str:
        return "deploy"

    @property
    def description(self) -> str:
        return "Converge an environment to a template from an input artifact"

    @property
    def config_schema(self) -> type[BaseModel]:
        return DeployConfig

    def validate_declaration(
        self, definition: PipelineDefinition, stage_name: str, action: ActionDeclaration
    ) -> list[str]:
        errors = super().validate_declaration(definition, stage_name, action)
        if errors:
            return errors
        label = f"{stage_name}/{action.name}"
        config = DeployConfig.model_validate(action.configuration)
        artifact = ArtifactPath.parse(config.template_path).artifact
        if artifact not in action.inputs:
            errors.append(
                f"{label}: template artifact '{artifact}' is not a declared input"
            )
        if len(action.outputs) > 1:
            errors.append(f"{label}: deploy action exports at most one deployment record")
        return errors

    async def execute(self, context: ActionContext) -> ActionOutcome:
        config = DeployConfig.model_validate(context.action.configuration)
        result = await context.services.deployer.apply(
            config.environment,
            config.template_path,
            context.artifacts,
            parameter_overrides=config.parameter_overrides,
        )

        outputs = {}
        if context.action.outputs:
            output = context.action.outputs[0]
            record = {
                "environment": result.environment,
                "execution_id": context.execution.id,
                "stack_name": config.stack_name,
                "template_digest": result.template_digest,
                "template_ref": result.template_ref,
            }
            payload = json.dumps(record, sort_keys=True, indent=2).encode("utf-8")
            outputs[output] = await context.artifacts.put_once(output, payload)

        summary = "no changes" if result.no_op else f"{len(result.changes)} changes"
        logger.info("Deployed %s to %s (%s)", result.template_ref, result.environment, summary)
        return ActionOutcome(outputs=outputs, diagnostics=summary)
