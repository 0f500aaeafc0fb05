# src/storage/layout.py - v1
"""Path and key conventions for per-execution artifact namespaces.

Local layout under ARTIFACT_ROOT:

    executions/
      {execution_id}/
        artifacts/
          {artifact_name}
"""

from __future__ import annotations

import re
from pathlib import Path

EXECUTIONS_DIR = "executions"
ARTIFACTS_DIR = "artifacts"
TMP_SUFFIX = ".partial"

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")


def validate_name(value: str, kind: str = "artifact name") -> str:
    """Reject names that could escape their namespace."""
    if not _NAME_RE.match(value) or value.endswith(TMP_SUFFIX):
        raise ValueError(f"Invalid {kind}: {value!r}")
    return value


def execution_dir(root: Path, execution_id: str) -> Path:
    return root / EXECUTIONS_DIR / validate_name(execution_id, "execution id")


def artifacts_dir(root: Path, execution_id: str) -> Path:
    return execution_dir(root, execution_id) / ARTIFACTS_DIR


def artifact_path(root: Path, execution_id: str, name: str) -> Path:
    return artifacts_dir(root, execution_id) / validate_name(name)


def artifact_key(prefix: str, execution_id: str, name: str) -> str:
    """Object-store key for an artifact."""
    return (
        f"{prefix}{EXECUTIONS_DIR}/{validate_name(execution_id, 'execution id')}/"
        f"{ARTIFACTS_DIR}/{validate_name(name)}"
    )


def namespace_prefix(prefix: str, execution_id: str) -> str:
    return f"{prefix}{EXECUTIONS_DIR}/{validate_name(execution_id, 'execution id')}/"
