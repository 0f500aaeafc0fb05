# src/tracking/audit.py - v1
"""Append-only audit trail of stage transitions and approval decisions."""

from __future__ import annotations

import logging

from stagegate.core.models import AuditRecord, Execution
from stagegate.state.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

EXECUTION_SCOPE = "-"


class AuditTrail:
    """Writes AuditRecords to the state store and mirrors them to the log."""

    def __init__(self, store: BaseStateStore) -> None:
        self._store = store

    async def record(
        self,
        execution: Execution,
        event: str,
        outcome: str,
        stage: str = EXECUTION_SCOPE,
        action: str | None = None,
        actor: str | None = None,
        detail: str | None = None,
    ) -> AuditRecord:
        entry = AuditRecord(
            execution_id=execution.id,
            pipeline_name=execution.pipeline_name,
            stage=stage,
            event=event,
            outcome=outcome,
            action=action,
            actor=actor,
            detail=detail,
        )
        await self._store.append_audit(entry)
        logger.info(
            "audit %s stage=%s outcome=%s%s",
            event, stage, outcome, f" actor={actor}" if actor else "",
            extra={"data": entry.model_dump(mode="json", exclude_none=True)},
        )
        return entry

    async def history(self, execution_id: str) -> list[AuditRecord]:
        return await self._store.list_audit(execution_id)
