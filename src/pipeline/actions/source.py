# src/pipeline/actions/source.py - v1
"""Source action: snapshot the triggering commit into the source artifact."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from stagegate.core.models import ActionDeclaration, PipelineDefinition
from stagegate.pipeline.plugin_kit.base_action import BaseActionExecutor
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionOutcome
from stagegate.security.permissions import SOURCE_FETCH, source_resource

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    repository: str | None = None
    branch: str | None = None


class SourceAction(BaseActionExecutor):
    """Fetches ``repository@commit_ref`` and writes it as one zip artifact."""

    @property
    def action_type(self) -> str:
        return "source"

    @property
    def description(self) -> str:
        return "Snapshot the triggering commit of the pipeline's repository"

    @property
    def config_schema(self) -> type[BaseModel]:
        return SourceConfig

    def validate_declaration(
        self, definition: PipelineDefinition, stage_name: str, action: ActionDeclaration
    ) -> list[str]:
        errors = super().validate_declaration(definition, stage_name, action)
        if len(action.outputs) != 1:
            errors.append(f"{stage_name}/{action.name}: source action needs exactly one output")
        if action.inputs:
            errors.append(f"{stage_name}/{action.name}: source action takes no inputs")
        return errors

    async def execute(self, context: ActionContext) -> ActionOutcome:
        config = SourceConfig.model_validate(context.action.configuration)
        repository = config.repository or context.definition.source.repository
        commit_ref = context.execution.trigger.commit_ref

        context.principal.require(SOURCE_FETCH, source_resource(repository))
        payload = await context.services.sources.fetch(repository, commit_ref)

        output = context.action.outputs[0]
        ref = await context.artifacts.put_once(output, payload)
        logger.info("Source %s@%s stored as %s", repository, commit_ref, output)
        return ActionOutcome(outputs={output: ref})
