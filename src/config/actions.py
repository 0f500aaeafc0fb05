# src/config/actions.py - v1
"""Declarative action executor registry configuration.

One executor per action type, loaded by pipeline/registry.py.
"""

from __future__ import annotations

# Fully qualified class paths for dynamic import by pipeline/registry.py.
ACTION_REGISTRY: list[str] = [
    "stagegate.pipeline.actions.source.SourceAction",
    "stagegate.pipeline.actions.build.BuildAction",
    "stagegate.pipeline.actions.deploy.DeployAction",
    "stagegate.pipeline.actions.manual_approval.ManualApprovalAction",
]
