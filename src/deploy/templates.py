# src/deploy/templates.py - v1
"""Deployment template parsing, parameter resolution and change sets.

A template is a JSON document in the familiar infrastructure-template shape:

    {
      "Parameters": {"Stage": {"Type": "String", "Default": "dev"}},
      "Resources": {
        "Table": {"Type": "App::Store::Table",
                  "Properties": {"Name": {"Ref": "Stage"}}}
      }
    }

``{"Ref": <parameter>}`` values are replaced by the resolved parameter; a
Ref naming anything else is left for the target to interpret.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from stagegate.deploy.models import ResourceChange


class TemplateError(ValueError):
    """The template document is malformed or cannot be resolved."""


def parse_template(body: bytes | str) -> dict[str, Any]:
    """Decode and shape-check a template document.

    Raises:
        TemplateError: If the document is not a valid template.
    """
    try:
        doc = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TemplateError(f"Template is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise TemplateError("Template must be a JSON object")
    resources = doc.get("Resources", {})
    if not isinstance(resources, dict):
        raise TemplateError("Template 'Resources' must be an object")
    for logical_id, resource in resources.items():
        if not isinstance(resource, dict) or not isinstance(resource.get("Type"), str):
            raise TemplateError(f"Resource '{logical_id}' must declare a string 'Type'")
    parameters = doc.get("Parameters", {})
    if not isinstance(parameters, dict):
        raise TemplateError("Template 'Parameters' must be an object")
    return doc


def resolve_parameters(
    template: dict[str, Any], overrides: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Merge parameter defaults with overrides.

    Raises:
        TemplateError: Unknown override, or a parameter without any value.
    """
    declared: dict[str, Any] = template.get("Parameters", {})
    overrides = overrides or {}

    unknown = sorted(set(overrides) - set(declared))
    if unknown:
        raise TemplateError(f"Parameter overrides not declared by template: {unknown}")

    values: dict[str, Any] = {}
    for name, decl in declared.items():
        if name in overrides:
            values[name] = overrides[name]
        elif isinstance(decl, dict) and "Default" in decl:
            values[name] = decl["Default"]
        else:
            raise TemplateError(f"Parameter '{name}' has no default and no override")
    return values


def _substitute(value: Any, parameters: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        if set(value) == {"Ref"} and value["Ref"] in parameters:
            return parameters[value["Ref"]]
        return {k: _substitute(v, parameters) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, parameters) for v in value]
    return value


def render_resources(
    template: dict[str, Any], parameters: dict[str, Any]
) -> dict[str, dict[str, Any]]:
    """Return the template's resources with parameter Refs substituted."""
    return {
        logical_id: _substitute(resource, parameters)
        for logical_id, resource in template.get("Resources", {}).items()
    }


def template_digest(resources: dict[str, Any], parameters: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of the rendered template."""
    canonical = json.dumps(
        {"Parameters": parameters, "Resources": resources},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_changeset(
    observed: dict[str, dict[str, Any]],
    desired: dict[str, dict[str, Any]],
) -> list[ResourceChange]:
    """Minimal resource-level changes turning ``observed`` into ``desired``."""
    changes: list[ResourceChange] = []
    for logical_id in sorted(set(observed) | set(desired)):
        before = observed.get(logical_id)
        after = desired.get(logical_id)
        if before == after:
            continue
        if before is None:
            action = "add"
        elif after is None:
            action = "remove"
        else:
            action = "modify"
        changes.append(
            ResourceChange(
                action=action,
                logical_id=logical_id,
                resource_type=(after or before or {}).get("Type", ""),
                before=before,
                after=after,
            )
        )
    return changes
