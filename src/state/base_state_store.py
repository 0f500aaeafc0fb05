# src/state/base_state_store.py - v1
"""Abstract durable state store.

Holds every record the controller needs to survive a restart: pipeline
versions, executions (including suspended ones), approval requests and the
append-only audit trail.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from stagegate.core.models import ApprovalRequest, AuditRecord, Execution, Pipeline


class BaseStateStore(ABC):
    """Unified interface for state storage backends."""

    # --- Pipelines ---

    @abstractmethod
    async def save_pipeline(self, pipeline: Pipeline) -> None:
        """Store a new pipeline version. Existing versions are never rewritten."""

    @abstractmethod
    async def get_pipeline(self, name: str, version: int | None = None) -> Pipeline | None:
        """Return a specific version, or the latest when ``version`` is None."""

    @abstractmethod
    async def list_pipelines(self) -> list[Pipeline]:
        """Return the latest version of every pipeline."""

    # --- Executions ---

    @abstractmethod
    async def create_execution(self, execution: Execution) -> Execution:
        """Insert a new execution record (version becomes 1)."""

    @abstractmethod
    async def save_execution(self, execution: Execution) -> Execution:
        """Persist an execution, bumping its version.

        Raises:
            StaleStateError: If the stored version differs from ``execution.version``.
            ExecutionNotFound: If the execution was never created.
        """

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Execution | None:
        """Retrieve an execution by id."""

    @abstractmethod
    async def list_executions(
        self,
        pipeline_name: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Execution]:
        """List executions ordered by creation (oldest first)."""

    # --- Approvals ---

    @abstractmethod
    async def save_approval(self, request: ApprovalRequest) -> None:
        """Insert or update an approval request."""

    @abstractmethod
    async def get_approval(self, request_id: str) -> ApprovalRequest | None:
        """Retrieve an approval request by id."""

    @abstractmethod
    async def list_approvals(
        self,
        execution_id: str | None = None,
        states: Iterable[str] | None = None,
    ) -> list[ApprovalRequest]:
        """List approval requests, oldest first."""

    async def find_open_approval(self, execution_id: str) -> ApprovalRequest | None:
        """Return the open approval request of an execution, if any."""
        open_requests = await self.list_approvals(
            execution_id=execution_id, states=("opened", "pending")
        )
        return open_requests[0] if open_requests else None

    # --- Audit ---

    @abstractmethod
    async def append_audit(self, record: AuditRecord) -> None:
        """Append an audit record."""

    @abstractmethod
    async def list_audit(self, execution_id: str) -> list[AuditRecord]:
        """Return audit records of an execution in append order."""

    def close(self) -> None:  # noqa: B027
        """Release backend resources."""
