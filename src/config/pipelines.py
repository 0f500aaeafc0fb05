# src/config/pipelines.py - v1
"""Pipeline definitions: the standard delivery pipeline and file loading.

Pipeline and stack names are parameters, never module-level constants, so
several independent pipelines can be registered side by side.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from stagegate.core.errors import ConfigurationError
from stagegate.core.models import (
    ActionDeclaration,
    PipelineDefinition,
    SourceSpec,
    StageDeclaration,
    SupersedePolicy,
)
from stagegate.security.permissions import scope_definition


def delivery_pipeline(
    name: str,
    repository: str,
    branch: str = "main",
    dev_stack: str = "DevStack",
    prod_stack: str = "ProdStack",
    approval_topic: str = "pipeline-approvals",
    approval_information: str = "Please review the dev deployment and approve for production",
    approval_timeout_s: int | None = None,
    dev_environment: str = "dev",
    prod_environment: str = "prod",
    source_artifact: str = "SourceOutput",
    build_artifact: str = "BuildOutput",
    parameter_overrides: dict[str, dict[str, Any]] | None = None,
    supersede_policy: SupersedePolicy | None = None,
) -> PipelineDefinition:
    """Source -> Build -> Deploy_Dev -> Approve -> Deploy_Prod.

    Every action carries exactly the grants it needs: the build action may
    read the source artifact and write the build output, each deploy
    action may only touch its own environment, and the approval action may
    only publish to its topic.

    Args:
        parameter_overrides: Per-environment template parameter values,
            keyed by environment name.
    """
    overrides = parameter_overrides or {}
    approval_config: dict[str, Any] = {
        "topic": approval_topic,
        "additional_information": approval_information,
    }
    if approval_timeout_s is not None:
        approval_config["timeout_s"] = approval_timeout_s

    def deploy(action_name: str, environment: str, stack: str, record: str) -> ActionDeclaration:
        return ActionDeclaration(
            name=action_name,
            type="deploy",
            inputs=[build_artifact],
            outputs=[record],
            configuration={
                "environment": environment,
                "stack_name": stack,
                "template_path": f"{build_artifact}::{stack}.template.json",
                "parameter_overrides": overrides.get(environment, {}),
            },
        )

    definition = PipelineDefinition(
        name=name,
        source=SourceSpec(repository=repository, branch=branch),
        supersede_policy=supersede_policy,
        stages=[
            StageDeclaration(
                name="Source",
                actions=[
                    ActionDeclaration(
                        name="Source_Fetch",
                        type="source",
                        outputs=[source_artifact],
                    )
                ],
            ),
            StageDeclaration(
                name="Build",
                actions=[
                    ActionDeclaration(
                        name="Build_and_Test",
                        type="build",
                        inputs=[source_artifact],
                        outputs=[build_artifact],
                    )
                ],
            ),
            StageDeclaration(
                name="Deploy_Dev",
                actions=[deploy("Deploy_to_Dev", dev_environment, dev_stack, "DevDeployment")],
            ),
            StageDeclaration(
                name="Approve",
                actions=[
                    ActionDeclaration(
                        name="Approve_Production_Deployment",
                        type="manual_approval",
                        configuration=approval_config,
                    )
                ],
            ),
            StageDeclaration(
                name="Deploy_Prod",
                actions=[
                    deploy("Deploy_to_Production", prod_environment, prod_stack, "ProdDeployment")
                ],
            ),
        ],
    )
    return scope_definition(definition)


def load_definition(path: Path | str) -> PipelineDefinition:
    """Load a pipeline definition from a JSON or YAML file.

    Raises:
        ConfigurationError: If the file cannot be parsed or is not a valid definition.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read pipeline definition {path}: {e}") from e

    if path.suffix in (".yml", ".yaml"):
        import yaml

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline definition {path}: {e}") from e
