# src/pipeline/validator.py - v1
"""Static validation of pipeline definitions.

Runs at registration, before any execution exists, so a malformed
declaration fails with ConfigurationError instead of half-running. Artifact
hand-off is checked on a networkx graph:

    action node --produces--> artifact node --consumed by--> action node

Every artifact must have exactly one producer, and every consumer must sit
in a strictly later stage than that producer.
"""

from __future__ import annotations

import logging

import networkx as nx

from stagegate.core.errors import ConfigurationError
from stagegate.core.models import PipelineDefinition
from stagegate.pipeline.registry import ActionRegistry
from stagegate.security.permissions import check_action_grants
from stagegate.storage.layout import validate_name

logger = logging.getLogger(__name__)


def artifact_flow(definition: PipelineDefinition) -> nx.DiGraph:
    """Build the producer/consumer graph of a definition.

    Action nodes are ``"{stage}/{action}"`` with ``kind="action"`` and
    ``stage_index``; artifact nodes are ``"artifact:{name}"`` with
    ``kind="artifact"``.
    """
    graph = nx.DiGraph()
    for idx, stage in enumerate(definition.stages):
        for action in stage.actions:
            node = f"{stage.name}/{action.name}"
            graph.add_node(node, kind="action", stage_index=idx, type=action.type)
            for name in action.outputs:
                graph.add_node(f"artifact:{name}", kind="artifact", name=name)
                graph.add_edge(node, f"artifact:{name}")
            for name in action.inputs:
                graph.add_node(f"artifact:{name}", kind="artifact", name=name)
                graph.add_edge(f"artifact:{name}", node)
    return graph


def _check_names(definition: PipelineDefinition) -> list[str]:
    errors: list[str] = []
    try:
        validate_name(definition.name, "pipeline name")
    except ValueError as e:
        errors.append(str(e))

    if not definition.stages:
        errors.append("Pipeline declares no stages")

    stage_names: set[str] = set()
    action_names: set[str] = set()
    for stage in definition.stages:
        if stage.name in stage_names:
            errors.append(f"Duplicate stage name '{stage.name}'")
        stage_names.add(stage.name)
        if not stage.actions:
            errors.append(f"Stage '{stage.name}' declares no actions")

        approvals = [a for a in stage.actions if a.type == "manual_approval"]
        if len(approvals) > 1:
            errors.append(f"Stage '{stage.name}' declares more than one manual approval")

        for action in stage.actions:
            if action.name in action_names:
                errors.append(f"Duplicate action name '{action.name}'")
            action_names.add(action.name)
            for artifact in [*action.inputs, *action.outputs]:
                try:
                    validate_name(artifact)
                except ValueError as e:
                    errors.append(f"{stage.name}/{action.name}: {e}")
    return errors


def _check_artifact_flow(definition: PipelineDefinition) -> list[str]:
    errors: list[str] = []
    graph = artifact_flow(definition)

    if not nx.is_directed_acyclic_graph(graph):
        cycle = nx.find_cycle(graph)
        errors.append(f"Artifact flow contains a cycle: {cycle}")

    for node, data in graph.nodes(data=True):
        if data["kind"] != "artifact":
            continue
        producers = list(graph.predecessors(node))
        name = data["name"]
        if not producers:
            consumers = sorted(graph.successors(node))
            errors.append(f"Artifact '{name}' consumed by {consumers} is never produced")
            continue
        if len(producers) > 1:
            errors.append(f"Artifact '{name}' is written by more than one action: {sorted(producers)}")
            continue
        produced_at = graph.nodes[producers[0]]["stage_index"]
        for consumer in graph.successors(node):
            if graph.nodes[consumer]["stage_index"] <= produced_at:
                errors.append(
                    f"Action '{consumer}' consumes '{name}' which is not produced "
                    "by an earlier stage"
                )
    return errors


def validate_definition(
    definition: PipelineDefinition, registry: ActionRegistry
) -> list[str]:
    """Return every problem with ``definition`` (empty if valid)."""
    errors = _check_names(definition)
    errors.extend(_check_artifact_flow(definition))

    for stage in definition.stages:
        for action in stage.actions:
            executor = registry.get(action.type)
            if executor is None:
                errors.append(
                    f"{stage.name}/{action.name}: no executor for action type '{action.type}'"
                )
                continue
            errors.extend(executor.validate_declaration(definition, stage.name, action))
            errors.extend(check_action_grants(definition, stage.name, action))
    return errors


def ensure_valid(definition: PipelineDefinition, registry: ActionRegistry) -> None:
    """Raise ConfigurationError listing every problem with ``definition``."""
    errors = validate_definition(definition, registry)
    if errors:
        logger.error("Pipeline '%s' is invalid: %d problems", definition.name, len(errors))
        raise ConfigurationError(
            f"Invalid pipeline '{definition.name}': " + "; ".join(errors)
        )
