# src/deploy/executor.py - v1
"""Deployment Executor: converge an environment to a template.

``apply`` renders the template, diffs it against the target's observed
state and writes only when something differs, so repeating a deployment
with an unchanged template is a no-op. Any target error surfaces as
DeployFailed and the environment keeps its previous state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from stagegate.core.errors import ArtifactNotFound, DeployFailed
from stagegate.core.models import ArtifactPath
from stagegate.deploy.models import DeployResult, EnvironmentState
from stagegate.deploy.targets import BaseDeploymentTarget
from stagegate.deploy.templates import (
    TemplateError,
    compute_changeset,
    parse_template,
    render_resources,
    resolve_parameters,
    template_digest,
)
from stagegate.security.permissions import (
    ENVIRONMENT_APPLY,
    ENVIRONMENT_DESCRIBE,
    environment_resource,
)
from stagegate.security.scoped_store import ScopedArtifactStore
from stagegate.storage.bundles import read_member

logger = logging.getLogger(__name__)


class DeploymentExecutor:
    """Applies templates from build-output artifacts to a deployment target."""

    def __init__(self, target: BaseDeploymentTarget) -> None:
        self._target = target
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def target(self) -> BaseDeploymentTarget:
        return self._target

    async def apply(
        self,
        environment: str,
        template_ref: str,
        artifacts: ScopedArtifactStore,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> DeployResult:
        """Converge ``environment`` to the template at ``template_ref``.

        Args:
            environment: Target environment name.
            template_ref: ``Artifact::path`` of the template inside an artifact.
            artifacts: The calling action's scoped artifact view; its principal
                must hold environment:Describe/Apply on the environment.
            parameter_overrides: Values for template Parameters.

        Raises:
            DeployFailed: Template missing or invalid, or the target rejected it.
            PermissionDenied: The action's grants do not cover the environment.
        """
        principal = artifacts.principal
        resource = environment_resource(environment)
        principal.require(ENVIRONMENT_DESCRIBE, resource)

        try:
            path = ArtifactPath.parse(template_ref)
        except ValueError as e:
            raise DeployFailed(environment, str(e)) from e

        try:
            bundle = await artifacts.get(path.artifact)
            body = read_member(bundle, path.path)
        except ArtifactNotFound as e:
            raise DeployFailed(environment, str(e)) from e
        except KeyError:
            raise DeployFailed(
                environment, f"Template '{path.path}' not found in artifact '{path.artifact}'"
            ) from None

        try:
            template = parse_template(body)
            parameters = resolve_parameters(template, parameter_overrides)
        except TemplateError as e:
            raise DeployFailed(environment, str(e)) from e
        resources = render_resources(template, parameters)
        digest = template_digest(resources, parameters)

        lock = self._locks.setdefault(environment, asyncio.Lock())
        async with lock:
            observed = await self._target.describe(environment)
            changes = compute_changeset(observed.resources if observed else {}, resources)
            revision = observed.revision if observed else 0

            if not changes:
                logger.info(
                    "Environment %s already matches %s; nothing to apply",
                    environment, str(path),
                )
                return DeployResult(
                    environment=environment,
                    template_ref=str(path),
                    template_digest=digest,
                    no_op=True,
                    revision=revision,
                    execution_id=artifacts.execution_id,
                )

            principal.require(ENVIRONMENT_APPLY, resource)
            state = EnvironmentState(
                environment=environment,
                resources=resources,
                parameters=parameters,
                template_ref=str(path),
                template_digest=digest,
                execution_id=artifacts.execution_id,
                revision=revision + 1,
            )
            try:
                await self._target.apply(state)
            except DeployFailed:
                raise
            except Exception as e:
                logger.error("Deployment to %s rejected by target: %s", environment, e)
                raise DeployFailed(environment, str(e)) from e

        logger.info(
            "Deployed %s to %s: %d changes (revision %d)",
            str(path), environment, len(changes), state.revision,
        )
        return DeployResult(
            environment=environment,
            template_ref=str(path),
            template_digest=digest,
            changes=changes,
            revision=state.revision,
            execution_id=artifacts.execution_id,
        )
