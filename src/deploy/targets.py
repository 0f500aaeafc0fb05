# src/deploy/targets.py - v1
"""Deployment targets: where environment state is observed and converged.

A target's ``apply`` is all-or-nothing. If it raises, ``describe`` must
still return the state from before the call.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from stagegate.config.settings import Settings
from stagegate.deploy.models import EnvironmentState
from stagegate.storage.layout import validate_name

logger = logging.getLogger(__name__)

# Provider::Service::Resource
_RESOURCE_TYPE = re.compile(r"^[A-Za-z0-9]+(::[A-Za-z0-9]+){2}$")


class BaseDeploymentTarget(ABC):
    """Interface for environment backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Target identifier (e.g., 'local')."""

    @abstractmethod
    async def describe(self, environment: str) -> EnvironmentState | None:
        """Return the environment's current state, or None if never deployed."""

    @abstractmethod
    async def apply(self, state: EnvironmentState) -> None:
        """Replace the environment's state atomically.

        Raises:
            Exception: Any provider error; prior state stays intact.
        """


class LocalDeploymentTarget(BaseDeploymentTarget):
    """Keeps each environment as ``<root>/<environment>.json``.

    Writes go to a temporary file that replaces the old one with
    ``os.replace``, so readers see the old or the new state, never a mix.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, environment: str) -> Path:
        return self._root / f"{validate_name(environment, 'environment')}.json"

    async def describe(self, environment: str) -> EnvironmentState | None:
        path = self._path(environment)
        if not path.exists():
            return None
        return EnvironmentState.model_validate_json(path.read_text(encoding="utf-8"))

    async def apply(self, state: EnvironmentState) -> None:
        for logical_id, resource in state.resources.items():
            rtype = resource.get("Type", "")
            if not _RESOURCE_TYPE.match(rtype):
                raise ValueError(f"Resource '{logical_id}' has unsupported type {rtype!r}")

        path = self._path(state.environment)
        fd, tmp_name = tempfile.mkstemp(dir=str(self._root), prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.model_dump_json(indent=2))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Environment %s written (revision %d)", state.environment, state.revision)


def create_deployment_target(settings: Settings) -> BaseDeploymentTarget:
    """Create the deployment target backing DEPLOY_ROOT."""
    return LocalDeploymentTarget(settings.deploy_root)
