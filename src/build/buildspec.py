# src/build/buildspec.py - v1
"""Build specification file model (``buildspec.yml``).

Only the subset the orchestrator needs is modelled: environment variables,
the four ordered command phases, and which files make up the build output.

    version: 0.2
    env:
      variables:
        NODE_ENV: production
    phases:
      install:
        commands: [npm ci]
      build:
        commands: [npm test, npx cdk synth]
    artifacts:
      base-directory: cdk.out
      files: ["*.template.json"]
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stagegate.core.errors import BuildFailed

PHASE_ORDER: tuple[str, ...] = ("install", "pre_build", "build", "post_build")


class BuildPhase(BaseModel):
    commands: list[str] = Field(default_factory=list)


class BuildEnv(BaseModel):
    variables: dict[str, str] = Field(default_factory=dict)

    @field_validator("variables", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


class BuildPhases(BaseModel):
    install: BuildPhase | None = None
    pre_build: BuildPhase | None = None
    build: BuildPhase | None = None
    post_build: BuildPhase | None = None


class ArtifactSpec(BaseModel):
    """Files collected into the build-output artifact."""

    model_config = ConfigDict(populate_by_name=True)

    files: list[str] = Field(default_factory=lambda: ["**/*"])
    base_directory: str = Field(default=".", alias="base-directory")
    discard_paths: bool = Field(default=False, alias="discard-paths")

    @field_validator("discard_paths", mode="before")
    @classmethod
    def yes_no(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() in ("yes", "true", "1")
        return v


class BuildSpec(BaseModel):
    version: str = "0.2"
    env: BuildEnv = Field(default_factory=BuildEnv)
    phases: BuildPhases = Field(default_factory=BuildPhases)
    artifacts: ArtifactSpec = Field(default_factory=ArtifactSpec)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_str(cls, v: Any) -> Any:
        return str(v) if v is not None else "0.2"

    def commands(self) -> list[tuple[str, str]]:
        """Return (phase, command) pairs in execution order."""
        ordered: list[tuple[str, str]] = []
        for phase_name in PHASE_ORDER:
            phase = getattr(self.phases, phase_name)
            if phase is not None:
                ordered.extend((phase_name, cmd) for cmd in phase.commands)
        return ordered


def parse_buildspec(content: str | bytes, filename: str = "buildspec.yml") -> BuildSpec:
    """Parse and validate a buildspec document.

    Raises:
        BuildFailed: If the document is not valid YAML or not a valid buildspec.
    """
    import yaml

    if isinstance(content, bytes):
        content = content.decode("utf-8")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise BuildFailed(f"Invalid YAML in {filename}", diagnostics=str(e)) from e

    if not isinstance(data, dict):
        raise BuildFailed(f"{filename} must be a mapping")

    try:
        return BuildSpec.model_validate(data)
    except ValidationError as e:
        raise BuildFailed(f"Invalid {filename}", diagnostics=str(e)) from e
