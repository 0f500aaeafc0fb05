# src/state/sqlite_store.py - v1
"""SQLite-based state store (STATE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. Execution updates are
compare-and-swap on the ``version`` column, so two processes advancing the
same execution cannot both win.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path

from stagegate.core.errors import ExecutionNotFound, StaleStateError
from stagegate.core.ids import utcnow
from stagegate.core.models import ApprovalRequest, AuditRecord, Execution, Pipeline
from stagegate.state.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pipelines (
    name TEXT NOT NULL,
    version INTEGER NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (name, version)
);
CREATE TABLE IF NOT EXISTS executions (
    id TEXT PRIMARY KEY,
    pipeline_name TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_exec_pipeline ON executions(pipeline_name, status);
CREATE TABLE IF NOT EXISTS approvals (
    id TEXT PRIMARY KEY,
    execution_id TEXT NOT NULL,
    state TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_approval_exec ON approvals(execution_id, state);
CREATE TABLE IF NOT EXISTS audit (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_exec ON audit(execution_id);
"""


def _placeholders(values: list[str]) -> str:
    return ",".join("?" for _ in values)


class SqliteStateStore(BaseStateStore):
    """SQLite-backed state store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    # --- Pipelines ---

    async def save_pipeline(self, pipeline: Pipeline) -> None:
        try:
            self._conn.execute(
                "INSERT INTO pipelines (name, version, data) VALUES (?, ?, ?)",
                (pipeline.name, pipeline.version, pipeline.model_dump_json()),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(
                f"Pipeline {pipeline.name} v{pipeline.version} already exists"
            ) from exc
        self._conn.commit()

    async def get_pipeline(self, name: str, version: int | None = None) -> Pipeline | None:
        if version is None:
            cursor = self._conn.execute(
                "SELECT data FROM pipelines WHERE name = ? ORDER BY version DESC LIMIT 1",
                (name,),
            )
        else:
            cursor = self._conn.execute(
                "SELECT data FROM pipelines WHERE name = ? AND version = ?",
                (name, version),
            )
        row = cursor.fetchone()
        return Pipeline.model_validate_json(row[0]) if row else None

    async def list_pipelines(self) -> list[Pipeline]:
        cursor = self._conn.execute(
            """SELECT p.data FROM pipelines p
               JOIN (SELECT name, MAX(version) AS v FROM pipelines GROUP BY name) latest
                 ON p.name = latest.name AND p.version = latest.v
               ORDER BY p.name"""
        )
        return [Pipeline.model_validate_json(row[0]) for row in cursor.fetchall()]

    # --- Executions ---

    async def create_execution(self, execution: Execution) -> Execution:
        execution.version = 1
        try:
            self._conn.execute(
                """INSERT INTO executions (id, pipeline_name, status, version, created_at, data)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    execution.id,
                    execution.pipeline_name,
                    execution.status,
                    execution.version,
                    execution.created_at.isoformat(),
                    execution.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Execution {execution.id} already exists") from exc
        self._conn.commit()
        return execution

    async def save_execution(self, execution: Execution) -> Execution:
        expected = execution.version
        updated = execution.model_copy(
            update={"version": expected + 1, "updated_at": utcnow()}
        )
        cursor = self._conn.execute(
            """UPDATE executions SET status = ?, version = ?, data = ?
               WHERE id = ? AND version = ?""",
            (updated.status, updated.version, updated.model_dump_json(), execution.id, expected),
        )
        self._conn.commit()
        if cursor.rowcount == 0:
            exists = self._conn.execute(
                "SELECT version FROM executions WHERE id = ?", (execution.id,)
            ).fetchone()
            if exists is None:
                raise ExecutionNotFound(execution.id)
            raise StaleStateError(
                f"Execution {execution.id} is at version {exists[0]}, "
                f"update was based on {expected}"
            )
        execution.version = updated.version
        execution.updated_at = updated.updated_at
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        row = self._conn.execute(
            "SELECT data FROM executions WHERE id = ?", (execution_id,)
        ).fetchone()
        return Execution.model_validate_json(row[0]) if row else None

    async def list_executions(
        self,
        pipeline_name: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Execution]:
        query = "SELECT data FROM executions WHERE 1 = 1"
        params: list[str] = []
        if pipeline_name is not None:
            query += " AND pipeline_name = ?"
            params.append(pipeline_name)
        if statuses is not None:
            wanted = list(statuses)
            if not wanted:
                return []
            query += f" AND status IN ({_placeholders(wanted)})"
            params.extend(wanted)
        query += " ORDER BY created_at, id"
        cursor = self._conn.execute(query, params)
        return [Execution.model_validate_json(row[0]) for row in cursor.fetchall()]

    # --- Approvals ---

    async def save_approval(self, request: ApprovalRequest) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO approvals (id, execution_id, state, created_at, data)
               VALUES (?, ?, ?, ?, ?)""",
            (
                request.id,
                request.execution_id,
                request.state,
                request.created_at.isoformat(),
                request.model_dump_json(),
            ),
        )
        self._conn.commit()

    async def get_approval(self, request_id: str) -> ApprovalRequest | None:
        row = self._conn.execute(
            "SELECT data FROM approvals WHERE id = ?", (request_id,)
        ).fetchone()
        return ApprovalRequest.model_validate_json(row[0]) if row else None

    async def list_approvals(
        self,
        execution_id: str | None = None,
        states: Iterable[str] | None = None,
    ) -> list[ApprovalRequest]:
        query = "SELECT data FROM approvals WHERE 1 = 1"
        params: list[str] = []
        if execution_id is not None:
            query += " AND execution_id = ?"
            params.append(execution_id)
        if states is not None:
            wanted = list(states)
            if not wanted:
                return []
            query += f" AND state IN ({_placeholders(wanted)})"
            params.extend(wanted)
        query += " ORDER BY created_at, id"
        cursor = self._conn.execute(query, params)
        return [ApprovalRequest.model_validate_json(row[0]) for row in cursor.fetchall()]

    # --- Audit ---

    async def append_audit(self, record: AuditRecord) -> None:
        self._conn.execute(
            "INSERT INTO audit (execution_id, data) VALUES (?, ?)",
            (record.execution_id, record.model_dump_json()),
        )
        self._conn.commit()

    async def list_audit(self, execution_id: str) -> list[AuditRecord]:
        cursor = self._conn.execute(
            "SELECT data FROM audit WHERE execution_id = ? ORDER BY seq", (execution_id,)
        )
        return [AuditRecord.model_validate_json(row[0]) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
