# src/pipeline/registry.py - v1
"""Action registry: dynamic loading and lookup of action executors by type.

Executors are loaded from the ACTION_REGISTRY class paths. Tests and host
applications can register replacements (e.g. a recording deploy executor)
with ``register``.
"""

from __future__ import annotations

import importlib
import logging

from stagegate.config.actions import ACTION_REGISTRY
from stagegate.core.errors import ConfigurationError
from stagegate.pipeline.plugin_kit.base_action import BaseActionExecutor

logger = logging.getLogger(__name__)


class RegistryError(ConfigurationError):
    """Raised when executor loading or lookup fails."""


class ActionRegistry:
    """Registry of action executors keyed by action type."""

    def __init__(self) -> None:
        self._executors: dict[str, BaseActionExecutor] = {}

    @property
    def executors(self) -> dict[str, BaseActionExecutor]:
        return dict(self._executors)

    @property
    def action_types(self) -> list[str]:
        return sorted(self._executors)

    def load_all(self, class_paths: list[str] | None = None) -> ActionRegistry:
        """Load every executor from ACTION_REGISTRY (or ``class_paths``).

        Raises:
            RegistryError: If a class path cannot be imported.
        """
        for class_path in class_paths or ACTION_REGISTRY:
            executor = _import_executor(class_path)
            self._executors[executor.action_type] = executor
            logger.debug("Loaded executor for '%s': %s", executor.action_type, class_path)

        logger.info("Registry loaded %d action executors", len(self._executors))
        return self

    def register(self, executor: BaseActionExecutor) -> None:
        """Manually register an executor instance."""
        if executor.action_type in self._executors:
            logger.warning("Overwriting executor for action type: %s", executor.action_type)
        self._executors[executor.action_type] = executor

    def get(self, action_type: str) -> BaseActionExecutor | None:
        return self._executors.get(action_type)

    def get_or_raise(self, action_type: str) -> BaseActionExecutor:
        executor = self._executors.get(action_type)
        if executor is None:
            raise RegistryError(f"No executor registered for action type '{action_type}'")
        return executor


def default_registry() -> ActionRegistry:
    """Registry with the built-in source, build, deploy and approval executors."""
    return ActionRegistry().load_all()


def _import_executor(class_path: str) -> BaseActionExecutor:
    """Import and instantiate an executor from a dotted class path.

    Args:
        class_path: e.g. 'stagegate.pipeline.actions.build.BuildAction'
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseActionExecutor):
        raise RegistryError(f"{class_path} is not a BaseActionExecutor subclass")

    return cls()
