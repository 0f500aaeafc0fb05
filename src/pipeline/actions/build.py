# src/pipeline/actions/build.py - v1
"""Build action: run the source snapshot's buildspec, publish the build output."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from stagegate.core.models import ActionDeclaration, PipelineDefinition
from stagegate.pipeline.plugin_kit.base_action import BaseActionExecutor
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionOutcome

logger = logging.getLogger(__name__)


class BuildConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    buildspec: str | None = None
    environment_variables: dict[str, str] = Field(default_factory=dict)


class BuildAction(BaseActionExecutor):
    """Consumes one source artifact and produces exactly one build-output artifact."""

    @property
    def action_type(self) -> str:
        return "build"

    @property
    def description(self) -> str:
        return "Run buildspec commands and package the declared artifact files"

    @property
    def config_schema(self) -> type[BaseModel]:
        return BuildConfig

    def validate_declaration(
        self, definition: PipelineDefinition, stage_name: str, action: ActionDeclaration
    ) -> list[str]:
        errors = super().validate_declaration(definition, stage_name, action)
        label = f"{stage_name}/{action.name}"
        if len(action.inputs) != 1:
            errors.append(f"{label}: build action needs exactly one source input")
        if len(action.outputs) != 1:
            errors.append(f"{label}: build action produces exactly one output")
        return errors

    async def execute(self, context: ActionContext) -> ActionOutcome:
        config = BuildConfig.model_validate(context.action.configuration)
        execution = context.execution
        source = await context.artifacts.get(context.action.inputs[0])

        env = {
            "STAGEGATE_PIPELINE": context.definition.name,
            "STAGEGATE_EXECUTION_ID": execution.id,
            "STAGEGATE_COMMIT_REF": execution.trigger.commit_ref,
            "STAGEGATE_BRANCH": execution.trigger.branch,
        }
        env.update(config.environment_variables)

        result = await context.services.builder.run(
            source, extra_env=env, buildspec_filename=config.buildspec
        )

        output = context.action.outputs[0]
        ref = await context.artifacts.put_once(output, result.payload)
        logger.info("Build output %s: %d files, %d bytes", output, len(result.files), ref.size)
        return ActionOutcome(outputs={output: ref}, diagnostics=result.diagnostics[-4000:])
