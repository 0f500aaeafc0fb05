# src/security/permissions.py - v1
"""Least-privilege permission grants for pipeline actions.

Every action runs as its own principal, ``action:{pipeline}/{stage}/{action}``,
and may only touch the resources its declaration names:

    artifact:{execution_id}/{name}   artifact:Get, artifact:Put
    environment:{name}               environment:Describe, environment:Apply
    notification:{topic}             notification:Publish
    source:{repository}              source:Fetch

Grant patterns use ``*`` only in the execution-id position of artifact
resources (``artifact:*/BuildOutput``), because an action's principal serves
every execution of its pipeline but only ever its declared artifact names.
"""

from __future__ import annotations

from fnmatch import fnmatchcase

from stagegate.core.errors import ConfigurationError, PermissionDenied
from stagegate.core.models import ActionDeclaration, PermissionGrant, PipelineDefinition

ARTIFACT_GET = "artifact:Get"
ARTIFACT_PUT = "artifact:Put"
ENVIRONMENT_DESCRIBE = "environment:Describe"
ENVIRONMENT_APPLY = "environment:Apply"
NOTIFICATION_PUBLISH = "notification:Publish"
SOURCE_FETCH = "source:Fetch"

KNOWN_VERBS = frozenset(
    {
        ARTIFACT_GET,
        ARTIFACT_PUT,
        ENVIRONMENT_DESCRIBE,
        ENVIRONMENT_APPLY,
        NOTIFICATION_PUBLISH,
        SOURCE_FETCH,
    }
)


def principal_for(pipeline_name: str, stage_name: str, action_name: str) -> str:
    return f"action:{pipeline_name}/{stage_name}/{action_name}"


def artifact_resource(execution_id: str, name: str) -> str:
    return f"artifact:{execution_id}/{name}"


def environment_resource(environment: str) -> str:
    return f"environment:{environment}"


def notification_resource(topic: str) -> str:
    return f"notification:{topic}"


def source_resource(repository: str) -> str:
    return f"source:{repository}"


def required_grants(
    definition: PipelineDefinition,
    stage_name: str,
    action: ActionDeclaration,
) -> list[PermissionGrant]:
    """Derive the exact grants an action needs from its declaration."""
    principal = principal_for(definition.name, stage_name, action.name)
    grants: list[PermissionGrant] = []

    if action.inputs:
        grants.append(
            PermissionGrant(
                principal=principal,
                actions=(ARTIFACT_GET,),
                resources=tuple(artifact_resource("*", name) for name in action.inputs),
            )
        )
    if action.outputs:
        grants.append(
            PermissionGrant(
                principal=principal,
                actions=(ARTIFACT_PUT,),
                resources=tuple(artifact_resource("*", name) for name in action.outputs),
            )
        )

    config = action.configuration
    if action.type == "source":
        repository = config.get("repository") or definition.source.repository
        grants.append(
            PermissionGrant(
                principal=principal,
                actions=(SOURCE_FETCH,),
                resources=(source_resource(repository),),
            )
        )
    elif action.type == "deploy" and config.get("environment"):
        grants.append(
            PermissionGrant(
                principal=principal,
                actions=(ENVIRONMENT_DESCRIBE, ENVIRONMENT_APPLY),
                resources=(environment_resource(config["environment"]),),
            )
        )
    elif action.type == "manual_approval" and config.get("topic"):
        grants.append(
            PermissionGrant(
                principal=principal,
                actions=(NOTIFICATION_PUBLISH,),
                resources=(notification_resource(config["topic"]),),
            )
        )
    return grants


def capability_set(grants: list[PermissionGrant]) -> set[tuple[str, str]]:
    caps: set[tuple[str, str]] = set()
    for grant in grants:
        caps |= grant.capabilities()
    return caps


def _is_wildcard_resource(pattern: str) -> bool:
    """True for patterns that name no concrete resource (``*``, ``artifact:*``)."""
    kind, _, rest = pattern.partition(":")
    if not rest or kind == "*":
        return True
    last = rest.rsplit("/", 1)[-1]
    return set(last) <= {"*", "?"}


def check_action_grants(
    definition: PipelineDefinition,
    stage_name: str,
    action: ActionDeclaration,
) -> list[str]:
    """Return problems with an action's declared grants (empty if exact)."""
    errors: list[str] = []
    principal = principal_for(definition.name, stage_name, action.name)
    label = f"{stage_name}/{action.name}"

    for grant in action.grants:
        if grant.principal != principal:
            errors.append(f"{label}: grant principal {grant.principal!r} != {principal!r}")
        for verb in grant.actions:
            if verb not in KNOWN_VERBS:
                errors.append(f"{label}: verb {verb!r} is not an enumerated capability")
        for resource in grant.resources:
            if _is_wildcard_resource(resource):
                errors.append(f"{label}: resource pattern {resource!r} is a wildcard")

    declared = capability_set(action.grants)
    required = capability_set(required_grants(definition, stage_name, action))
    broader = sorted(declared - required)
    missing = sorted(required - declared)
    if broader:
        errors.append(f"{label}: grants broader than required: {broader}")
    if missing:
        errors.append(f"{label}: missing required grants: {missing}")
    return errors


def scope_definition(definition: PipelineDefinition) -> PipelineDefinition:
    """Return a copy of ``definition`` with every action's grants set to exactly what it needs."""
    scoped = definition.model_copy(deep=True)
    for stage in scoped.stages:
        for action in stage.actions:
            action.grants = required_grants(scoped, stage.name, action)
    return scoped


class ScopedPrincipal:
    """Runtime identity of one action, limited to its declared grants."""

    def __init__(self, name: str, grants: list[PermissionGrant]) -> None:
        self._name = name
        self._grants = [g for g in grants if g.principal == name]

    @property
    def name(self) -> str:
        return self._name

    @property
    def capabilities(self) -> set[tuple[str, str]]:
        """Effective capability set: exactly the declared (verb, pattern) pairs."""
        return capability_set(self._grants)

    def allows(self, verb: str, resource: str) -> bool:
        return any(
            v == verb and fnmatchcase(resource, pattern)
            for v, pattern in self.capabilities
        )

    def require(self, verb: str, resource: str) -> None:
        """Raise PermissionDenied unless a grant covers (verb, resource)."""
        if not self.allows(verb, resource):
            raise PermissionDenied(self._name, verb, resource)

    def __repr__(self) -> str:
        return f"ScopedPrincipal({self._name!r}, {len(self._grants)} grants)"


def ensure_exact_grants(definition: PipelineDefinition) -> None:
    """Raise ConfigurationError if any action's grants differ from its requirements."""
    errors: list[str] = []
    for stage in definition.stages:
        for action in stage.actions:
            errors.extend(check_action_grants(definition, stage.name, action))
    if errors:
        raise ConfigurationError("; ".join(errors))
