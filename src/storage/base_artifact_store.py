# src/storage/base_artifact_store.py - v1
"""Abstract artifact store interface.

Artifacts are write-once per execution and addressed by
(execution_id, name). A successful ``put`` makes the complete payload
visible to every later reader; partial writes are never observable.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from stagegate.core.models import ArtifactRef


class BaseArtifactStore(ABC):
    """Unified interface for artifact storage backends."""

    @abstractmethod
    async def put(self, execution_id: str, name: str, payload: bytes) -> ArtifactRef:
        """Write an artifact.

        Raises:
            DuplicateArtifact: If ``name`` was already written for the execution.
        """

    @abstractmethod
    async def get(self, execution_id: str, name: str) -> bytes:
        """Read an artifact.

        Raises:
            ArtifactNotFound: If the artifact does not exist.
        """

    @abstractmethod
    async def exists(self, execution_id: str, name: str) -> bool:
        """Check whether an artifact has been written."""

    @abstractmethod
    async def list_artifacts(self, execution_id: str) -> list[str]:
        """List artifact names written for an execution."""

    @abstractmethod
    async def delete_namespace(self, execution_id: str) -> int:
        """Delete every artifact of an execution (retention). Returns count."""

    async def ref(self, execution_id: str, name: str) -> ArtifactRef:
        """Build an ArtifactRef for an existing artifact."""
        payload = await self.get(execution_id, name)
        return self._make_ref(execution_id, name, payload)

    def uri(self, execution_id: str, name: str) -> str:
        return f"artifact://{execution_id}/{name}"

    def _make_ref(self, execution_id: str, name: str, payload: bytes) -> ArtifactRef:
        return ArtifactRef(
            execution_id=execution_id,
            name=name,
            digest=hashlib.sha256(payload).hexdigest(),
            size=len(payload),
            uri=self.uri(execution_id, name),
        )
