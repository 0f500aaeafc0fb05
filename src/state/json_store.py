# src/state/json_store.py - v1
"""JSON file-based state store (default STATE_BACKEND=json).

One JSON file per record under STATE_ROOT, replaced atomically on every
write; audit trails are JSON Lines files appended per execution.

    pipelines/{name}/v{version}.json
    executions/{execution_id}.json
    approvals/{request_id}.json
    audit/{execution_id}.jsonl
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from stagegate.core.errors import ExecutionNotFound, StaleStateError
from stagegate.core.ids import utcnow
from stagegate.core.models import ApprovalRequest, AuditRecord, Execution, Pipeline
from stagegate.state.base_state_store import BaseStateStore
from stagegate.storage.layout import validate_name

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class JsonStateStore(BaseStateStore):
    """File-based state store using JSON files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        for sub in ("pipelines", "executions", "approvals", "audit"):
            (self._root / sub).mkdir(parents=True, exist_ok=True)

    # --- Pipelines ---

    async def save_pipeline(self, pipeline: Pipeline) -> None:
        path = self._pipeline_path(pipeline.name, pipeline.version)
        if path.exists():
            raise ValueError(
                f"Pipeline {pipeline.name} v{pipeline.version} already exists"
            )
        _atomic_write(path, pipeline.model_dump_json(indent=2))

    async def get_pipeline(self, name: str, version: int | None = None) -> Pipeline | None:
        if version is None:
            versions = self._pipeline_versions(name)
            if not versions:
                return None
            version = versions[-1]
        path = self._pipeline_path(name, version)
        if not path.exists():
            return None
        return Pipeline.model_validate_json(path.read_text(encoding="utf-8"))

    async def list_pipelines(self) -> list[Pipeline]:
        pipelines: list[Pipeline] = []
        for directory in sorted((self._root / "pipelines").iterdir()):
            if directory.is_dir():
                latest = await self.get_pipeline(directory.name)
                if latest is not None:
                    pipelines.append(latest)
        return pipelines

    # --- Executions ---

    async def create_execution(self, execution: Execution) -> Execution:
        path = self._execution_path(execution.id)
        if path.exists():
            raise ValueError(f"Execution {execution.id} already exists")
        execution.version = 1
        _atomic_write(path, execution.model_dump_json(indent=2))
        return execution

    async def save_execution(self, execution: Execution) -> Execution:
        path = self._execution_path(execution.id)
        if not path.exists():
            raise ExecutionNotFound(execution.id)
        stored = Execution.model_validate_json(path.read_text(encoding="utf-8"))
        if stored.version != execution.version:
            raise StaleStateError(
                f"Execution {execution.id} is at version {stored.version}, "
                f"update was based on {execution.version}"
            )
        execution.version += 1
        execution.updated_at = utcnow()
        _atomic_write(path, execution.model_dump_json(indent=2))
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        path = self._execution_path(execution_id)
        if not path.exists():
            return None
        return Execution.model_validate_json(path.read_text(encoding="utf-8"))

    async def list_executions(
        self,
        pipeline_name: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Execution]:
        wanted = set(statuses) if statuses is not None else None
        executions: list[Execution] = []
        for path in sorted((self._root / "executions").glob("*.json")):
            try:
                execution = Execution.model_validate_json(path.read_text(encoding="utf-8"))
            except ValueError as e:
                logger.warning("Skipping unreadable execution file %s: %s", path, e)
                continue
            if pipeline_name is not None and execution.pipeline_name != pipeline_name:
                continue
            if wanted is not None and execution.status not in wanted:
                continue
            executions.append(execution)
        executions.sort(key=lambda e: (e.created_at, e.id))
        return executions

    # --- Approvals ---

    async def save_approval(self, request: ApprovalRequest) -> None:
        _atomic_write(self._approval_path(request.id), request.model_dump_json(indent=2))

    async def get_approval(self, request_id: str) -> ApprovalRequest | None:
        path = self._approval_path(request_id)
        if not path.exists():
            return None
        return ApprovalRequest.model_validate_json(path.read_text(encoding="utf-8"))

    async def list_approvals(
        self,
        execution_id: str | None = None,
        states: Iterable[str] | None = None,
    ) -> list[ApprovalRequest]:
        wanted = set(states) if states is not None else None
        requests: list[ApprovalRequest] = []
        for path in (self._root / "approvals").glob("*.json"):
            request = ApprovalRequest.model_validate_json(path.read_text(encoding="utf-8"))
            if execution_id is not None and request.execution_id != execution_id:
                continue
            if wanted is not None and request.state not in wanted:
                continue
            requests.append(request)
        requests.sort(key=lambda r: (r.created_at, r.id))
        return requests

    # --- Audit ---

    async def append_audit(self, record: AuditRecord) -> None:
        path = self._audit_path(record.execution_id)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(record.model_dump_json() + "\n")
            fh.flush()
            os.fsync(fh.fileno())

    async def list_audit(self, execution_id: str) -> list[AuditRecord]:
        path = self._audit_path(execution_id)
        if not path.exists():
            return []
        return [
            AuditRecord.model_validate_json(line)
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]

    # --- Paths ---

    def _pipeline_path(self, name: str, version: int) -> Path:
        return self._root / "pipelines" / validate_name(name, "pipeline name") / f"v{version}.json"

    def _pipeline_versions(self, name: str) -> list[int]:
        directory = self._root / "pipelines" / validate_name(name, "pipeline name")
        if not directory.is_dir():
            return []
        return sorted(int(p.stem[1:]) for p in directory.glob("v*.json"))

    def _execution_path(self, execution_id: str) -> Path:
        return self._root / "executions" / f"{validate_name(execution_id, 'execution id')}.json"

    def _approval_path(self, request_id: str) -> Path:
        return self._root / "approvals" / f"{validate_name(request_id, 'request id')}.json"

    def _audit_path(self, execution_id: str) -> Path:
        return self._root / "audit" / f"{validate_name(execution_id, 'execution id')}.jsonl"
