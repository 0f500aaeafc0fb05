# src/storage/store_factory.py - v1
"""Factory: instantiate the artifact store from configuration."""

from __future__ import annotations

from stagegate.config.settings import Settings
from stagegate.storage.base_artifact_store import BaseArtifactStore
from stagegate.storage.local_store import LocalArtifactStore


def create_artifact_store(settings: Settings) -> BaseArtifactStore:
    """Create the artifact store selected by ARTIFACT_BACKEND.

    Raises:
        ValueError: If the backend is not supported.
    """
    if settings.artifact_backend == "local":
        return LocalArtifactStore(settings.artifact_root)

    if settings.artifact_backend == "s3":
        from stagegate.storage.s3_store import S3ArtifactStore

        return S3ArtifactStore(
            bucket=settings.artifact_s3_bucket,
            prefix=settings.artifact_s3_prefix,
            region=settings.artifact_s3_region or None,
        )

    raise ValueError(f"Unsupported artifact backend: {settings.artifact_backend!r}")
