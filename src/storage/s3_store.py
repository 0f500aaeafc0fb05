# src/storage/s3_store.py - v1
"""S3-compatible artifact store (ARTIFACT_BACKEND=s3).

Supports AWS S3, MinIO, and other S3-compatible storage.
Requires 'boto3' package: pip install boto3.

Write-once is enforced server-side with a conditional PutObject
(``IfNoneMatch="*"``); S3 rejects the second writer with 412.
"""

from __future__ import annotations

import logging

from stagegate.core.errors import ArtifactNotFound, DuplicateArtifact
from stagegate.core.models import ArtifactRef
from stagegate.storage import layout
from stagegate.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


class S3ArtifactStore(BaseArtifactStore):
    """Artifact store backed by S3-compatible object storage."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "stagegate/artifacts/",
        region: str | None = None,
        endpoint_url: str | None = None,
        client: object | None = None,
    ) -> None:
        """Initialize S3 store.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix for all objects.
            region: AWS region (optional, uses boto3 default if not set).
            endpoint_url: Custom endpoint for MinIO/compatible storage.
            client: Pre-built S3 client (tests); boto3 is not imported when given.
        """
        if client is None:
            try:
                import boto3
            except ImportError as e:
                raise ImportError(
                    "boto3 package required for S3 artifact store: pip install boto3"
                ) from e

            kwargs: dict = {}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)

        self._s3 = client
        self._bucket = bucket
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""

    def _key(self, execution_id: str, name: str) -> str:
        return layout.artifact_key(self._prefix, execution_id, name)

    def uri(self, execution_id: str, name: str) -> str:
        return f"s3://{self._bucket}/{self._key(execution_id, name)}"

    async def put(self, execution_id: str, name: str, payload: bytes) -> ArtifactRef:
        key = self._key(execution_id, name)
        try:
            self._s3.put_object(
                Bucket=self._bucket, Key=key, Body=payload, IfNoneMatch="*"
            )
        except Exception as exc:
            if _error_code(exc) in ("PreconditionFailed", "412", "ConditionalRequestConflict"):
                raise DuplicateArtifact(execution_id, name) from exc
            raise
        logger.debug("S3 put: s3://%s/%s (%d bytes)", self._bucket, key, len(payload))
        return self._make_ref(execution_id, name, payload)

    async def get(self, execution_id: str, name: str) -> bytes:
        key = self._key(execution_id, name)
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
        except Exception as exc:
            if _error_code(exc) in ("NoSuchKey", "404", "NotFound"):
                raise ArtifactNotFound(execution_id, name) from exc
            raise
        return response["Body"].read()

    async def exists(self, execution_id: str, name: str) -> bool:
        try:
            self._s3.head_object(Bucket=self._bucket, Key=self._key(execution_id, name))
            return True
        except Exception as exc:
            if _error_code(exc) in ("NoSuchKey", "404", "NotFound"):
                return False
            raise

    async def list_artifacts(self, execution_id: str) -> list[str]:
        return sorted(name for name, _ in self._list_keys(execution_id))

    async def delete_namespace(self, execution_id: str) -> int:
        keys = [key for _, key in self._list_keys(execution_id)]
        # DeleteObjects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            self._s3.delete_objects(
                Bucket=self._bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)

    def _list_keys(self, execution_id: str) -> list[tuple[str, str]]:
        prefix = layout.namespace_prefix(self._prefix, execution_id) + layout.ARTIFACTS_DIR + "/"
        found: list[tuple[str, str]] = []
        token: str | None = None
        while True:
            kwargs = {"Bucket": self._bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            response = self._s3.list_objects_v2(**kwargs)
            for obj in response.get("Contents", []):
                name = obj["Key"][len(prefix):]
                if name and "/" not in name:
                    found.append((name, obj["Key"]))
            if not response.get("IsTruncated"):
                return found
            token = response.get("NextContinuationToken")
