# src/pipeline/plugin_kit/base_action.py - v1
"""Standard interface for action executors (one per action type)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from stagegate.pipeline.plugin_kit.models import ActionOutcome

if TYPE_CHECKING:
    from stagegate.core.models import ActionDeclaration, PipelineDefinition
    from stagegate.pipeline.plugin_kit.models import ActionContext


class BaseActionExecutor(ABC):
    """Standard interface for all action executors."""

    @property
    @abstractmethod
    def action_type(self) -> str:
        """Action type handled by this executor (e.g., 'build')."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what this executor does."""

    @property
    @abstractmethod
    def config_schema(self) -> type[BaseModel]:
        """Pydantic model validating the action's ``configuration``."""

    @abstractmethod
    async def execute(self, context: ActionContext) -> ActionOutcome:
        """Run the action.

        Returns:
            ActionOutcome: succeeded (with outputs) or suspended.

        Raises:
            PipelineError: Any failure; the stage runner records it.
        """

    def parse_config(self, action: ActionDeclaration) -> BaseModel:
        return self.config_schema.model_validate(action.configuration)

    def validate_declaration(
        self,
        definition: PipelineDefinition,
        stage_name: str,
        action: ActionDeclaration,
    ) -> list[str]:
        """Static checks run at registration. Override to add type-specific rules.

        Returns:
            List of error messages (empty if valid).
        """
        try:
            self.parse_config(action)
        except ValidationError as e:
            return [f"{stage_name}/{action.name}: invalid configuration: {e}"]
        return []
