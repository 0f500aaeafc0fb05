# src/storage/local_store.py - v1
"""Local filesystem artifact store (default backend).

Writes go to a temporary file in the target directory and are published
with ``os.link``, which fails if the name already exists. The link is atomic,
so a reader sees either nothing or the whole payload, and two concurrent
writers of the same name cannot both succeed.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from stagegate.core.errors import ArtifactNotFound, DuplicateArtifact
from stagegate.core.models import ArtifactRef
from stagegate.storage import layout
from stagegate.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)


class LocalArtifactStore(BaseArtifactStore):
    """Artifact store backed by a directory tree."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def put(self, execution_id: str, name: str, payload: bytes) -> ArtifactRef:
        target = layout.artifact_path(self._root, execution_id, name)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            raise DuplicateArtifact(execution_id, name)

        fd, tmp_name = tempfile.mkstemp(
            dir=str(target.parent), prefix=f".{name}.", suffix=layout.TMP_SUFFIX
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            try:
                os.link(tmp_name, target)
            except FileExistsError as exc:
                raise DuplicateArtifact(execution_id, name) from exc
        finally:
            os.unlink(tmp_name)

        logger.debug(
            "Artifact written: %s/%s (%d bytes)", execution_id, name, len(payload)
        )
        return self._make_ref(execution_id, name, payload)

    async def get(self, execution_id: str, name: str) -> bytes:
        path = layout.artifact_path(self._root, execution_id, name)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFound(execution_id, name) from exc

    async def exists(self, execution_id: str, name: str) -> bool:
        return layout.artifact_path(self._root, execution_id, name).is_file()

    async def list_artifacts(self, execution_id: str) -> list[str]:
        directory = layout.artifacts_dir(self._root, execution_id)
        if not directory.is_dir():
            return []
        return sorted(
            p.name
            for p in directory.iterdir()
            if p.is_file() and not p.name.endswith(layout.TMP_SUFFIX)
        )

    async def delete_namespace(self, execution_id: str) -> int:
        directory = layout.execution_dir(self._root, execution_id)
        if not directory.is_dir():
            return 0
        count = len(await self.list_artifacts(execution_id))
        shutil.rmtree(directory)
        return count

    def uri(self, execution_id: str, name: str) -> str:
        return layout.artifact_path(self._root, execution_id, name).as_uri()
