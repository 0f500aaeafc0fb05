# src/security/scoped_store.py - v1
"""Artifact store view bound to one execution and one action principal."""

from __future__ import annotations

import hashlib

from stagegate.core.errors import DuplicateArtifact
from stagegate.core.models import ArtifactRef
from stagegate.security.permissions import (
    ARTIFACT_GET,
    ARTIFACT_PUT,
    ScopedPrincipal,
    artifact_resource,
)
from stagegate.storage.base_artifact_store import BaseArtifactStore


class ScopedArtifactStore:
    """Enforces the principal's artifact grants on every call.

    Actions never receive the raw store; reading an undeclared input or
    writing an undeclared output raises PermissionDenied.
    """

    def __init__(
        self,
        store: BaseArtifactStore,
        principal: ScopedPrincipal,
        execution_id: str,
    ) -> None:
        self._store = store
        self._principal = principal
        self._execution_id = execution_id

    @property
    def execution_id(self) -> str:
        return self._execution_id

    @property
    def principal(self) -> ScopedPrincipal:
        return self._principal

    async def get(self, name: str) -> bytes:
        self._principal.require(ARTIFACT_GET, artifact_resource(self._execution_id, name))
        return await self._store.get(self._execution_id, name)

    async def put(self, name: str, payload: bytes) -> ArtifactRef:
        self._principal.require(ARTIFACT_PUT, artifact_resource(self._execution_id, name))
        return await self._store.put(self._execution_id, name, payload)

    async def put_once(self, name: str, payload: bytes) -> ArtifactRef:
        """Write an output, accepting an identical earlier write of the same name.

        A stage re-run after a crash may repeat an action whose output was
        already published. Identical bytes are the same artifact; different
        bytes still raise DuplicateArtifact.
        """
        self._principal.require(ARTIFACT_PUT, artifact_resource(self._execution_id, name))
        try:
            return await self._store.put(self._execution_id, name, payload)
        except DuplicateArtifact:
            existing = await self._store.ref(self._execution_id, name)
            if existing.digest != hashlib.sha256(payload).hexdigest():
                raise
            return existing

    async def exists(self, name: str) -> bool:
        self._principal.require(ARTIFACT_GET, artifact_resource(self._execution_id, name))
        return await self._store.exists(self._execution_id, name)

    async def ref(self, name: str) -> ArtifactRef:
        self._principal.require(ARTIFACT_GET, artifact_resource(self._execution_id, name))
        return await self._store.ref(self._execution_id, name)
