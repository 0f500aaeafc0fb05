# src/pipeline/controller.py - v1
"""Pipeline Controller: the execution state machine.

    queued -> running -> (suspended <-> running) -> succeeded | failed | cancelled

Each ``advance`` call runs exactly one stage (or resumes a suspended one)
and persists the outcome before returning; the stage cursor only moves
forward. A failed action is terminal for its execution and is never
retried here. Suspension on a manual approval is a stored state, not a
waiting task: the decision arrives through ``approve`` / ``reject`` (or the
expiry sweep) and the execution continues from the state store, even in a
different process.

Cancellation (operator request or supersede) takes effect at a stage
boundary only. If the execution is mid-stage in this process, the request
is held and applied once the stage's actions have all returned.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from stagegate.approval.gate import ApprovalGate
from stagegate.core.errors import (
    AlreadyDecided,
    ConfigurationError,
    ExecutionNotFound,
    NotFound,
)
from stagegate.core.ids import utcnow
from stagegate.core.models import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    ApprovalRequest,
    AuditRecord,
    Execution,
    ExecutionStatus,
    FailureInfo,
    Pipeline,
    PipelineDefinition,
    StageRecord,
    SupersedePolicy,
    TriggerEvent,
)
from stagegate.logging.context import set_execution_context, set_stage_context
from stagegate.pipeline.plugin_kit.models import ActionServices
from stagegate.pipeline.registry import ActionRegistry
from stagegate.pipeline.runner import StageRunner
from stagegate.pipeline.validator import ensure_valid
from stagegate.security.permissions import scope_definition
from stagegate.state.base_state_store import BaseStateStore
from stagegate.storage.base_artifact_store import BaseArtifactStore
from stagegate.tracking.audit import AuditTrail
from stagegate.tracking.models import ExecutionReport, PipelineStats
from stagegate.tracking.report import DEFAULT_CONSOLE_URL, build_report, compute_stats

logger = logging.getLogger(__name__)


class PipelineController:
    """Drives executions of registered pipelines.

    Args:
        state: Durable store for pipelines, executions, approvals and audit.
        artifacts: Artifact store holding every execution's namespace.
        registry: Action executors by type.
        services: Collaborators handed to actions (source, build, deploy, gate).
        supersede_policy: What a new trigger does to in-flight executions
            when the pipeline does not set its own policy.
        console_url_template: Format string with ``{pipeline}`` and ``{execution_id}``.
    """

    def __init__(
        self,
        state: BaseStateStore,
        artifacts: BaseArtifactStore,
        registry: ActionRegistry,
        services: ActionServices,
        supersede_policy: SupersedePolicy = "supersede",
        console_url_template: str = DEFAULT_CONSOLE_URL,
    ) -> None:
        self._state = state
        self._artifacts = artifacts
        self._registry = registry
        self._services = services
        self._policy = supersede_policy
        self._console_url_template = console_url_template
        self._runner = StageRunner(registry, artifacts, services)
        self._audit = AuditTrail(state)
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending_cancel: dict[str, tuple[str, str | None]] = {}

    @property
    def gate(self) -> ApprovalGate:
        return self._services.gate

    @property
    def state(self) -> BaseStateStore:
        return self._state

    @property
    def artifacts(self) -> BaseArtifactStore:
        return self._artifacts

    # === PIPELINES ===

    async def register_pipeline(
        self, definition: PipelineDefinition, scope_grants: bool = False
    ) -> Pipeline:
        """Validate and store a definition, creating a new version if it changed.

        Args:
            definition: Pipeline definition.
            scope_grants: Replace every action's grants with exactly the
                ones it requires before validating.

        Raises:
            ConfigurationError: If the definition is invalid.
        """
        if scope_grants:
            definition = scope_definition(definition)
        ensure_valid(definition, self._registry)

        fingerprint = definition.fingerprint()
        latest = await self._state.get_pipeline(definition.name)
        if latest is not None and latest.fingerprint == fingerprint:
            logger.debug("Pipeline %s unchanged (v%d)", definition.name, latest.version)
            return latest

        pipeline = Pipeline(
            name=definition.name,
            version=latest.version + 1 if latest else 1,
            definition=definition,
            fingerprint=fingerprint,
        )
        await self._state.save_pipeline(pipeline)
        logger.info("Registered pipeline %s v%d", pipeline.name, pipeline.version)
        return pipeline

    async def get_pipeline(self, name: str, version: int | None = None) -> Pipeline:
        pipeline = await self._state.get_pipeline(name, version)
        if pipeline is None:
            label = f"{name} v{version}" if version else name
            raise NotFound(f"Pipeline '{label}' is not registered")
        return pipeline

    async def list_pipelines(self) -> list[Pipeline]:
        return await self._state.list_pipelines()

    # === EXECUTIONS ===

    async def start(self, pipeline_name: str, trigger: TriggerEvent) -> str:
        """Create an execution of the latest pipeline version for ``trigger``.

        Under the ``supersede`` policy, in-flight executions of the same
        pipeline are cancelled at their next stage boundary. Under ``queue``
        the new execution waits until they finish.

        Raises:
            NotFound: If the pipeline is not registered.
            ConfigurationError: If the trigger is for another repository/branch.
        """
        pipeline = await self.get_pipeline(pipeline_name)
        source = pipeline.definition.source
        if (trigger.repository, trigger.branch) != (source.repository, source.branch):
            raise ConfigurationError(
                f"Trigger {trigger.repository}:{trigger.branch} does not match "
                f"pipeline '{pipeline_name}' ({source.repository}:{source.branch})"
            )

        policy = pipeline.definition.supersede_policy or self._policy
        in_flight = await self._state.list_executions(pipeline_name, IN_FLIGHT_STATUSES)

        execution = Execution(
            pipeline_name=pipeline.name,
            pipeline_version=pipeline.version,
            trigger=trigger,
            status="queued" if policy == "queue" and in_flight else "running",
        )
        execution = await self._state.create_execution(execution)
        set_execution_context(execution.pipeline_name, execution.id)
        await self._audit.record(
            execution, "execution_started", execution.status,
            actor=trigger.pusher, detail=f"commit {trigger.commit_ref}",
        )
        logger.info(
            "Execution %s of %s v%d started for %s (%s)",
            execution.id, pipeline.name, pipeline.version, trigger.commit_ref, execution.status,
        )

        if policy == "supersede":
            for old in in_flight:
                await self._request_cancel(
                    old.id, f"superseded by {execution.id}", superseded_by=execution.id
                )
        return execution.id

    async def advance(self, execution_id: str) -> ExecutionStatus:
        """Drive the state machine one step and return the resulting status."""
        async with self._lock(execution_id):
            execution = await self.get_execution(execution_id)
            set_execution_context(execution.pipeline_name, execution.id)
            if execution.is_terminal:
                self._locks.pop(execution_id, None)
                return execution.status
            if await self._apply_pending_cancel(execution):
                return execution.status

            pipeline = await self.get_pipeline(
                execution.pipeline_name, execution.pipeline_version
            )
            if execution.status == "queued":
                if not await self._can_promote(execution):
                    return execution.status
                execution.status = "running"
                await self._state.save_execution(execution)
                await self._audit.record(execution, "execution_promoted", "running")

            return await self._step(execution, pipeline.definition)

    async def run(self, execution_id: str) -> ExecutionStatus:
        """Advance until the execution is suspended, queued or terminal.

        When it ends, the next queued execution of the same pipeline (if
        any) is run as well.
        """
        status = await self.advance(execution_id)
        while status == "running":
            status = await self.advance(execution_id)

        if status in TERMINAL_STATUSES:
            execution = await self.get_execution(execution_id)
            await self._run_next_queued(execution.pipeline_name)
        return status

    async def status(self, execution_id: str) -> ExecutionStatus:
        return (await self.get_execution(execution_id)).status

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self._state.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    async def list_executions(
        self, pipeline_name: str | None = None, statuses: tuple[str, ...] | None = None
    ) -> list[Execution]:
        return await self._state.list_executions(pipeline_name, statuses)

    # === APPROVALS ===

    async def approve(
        self,
        execution_id: str,
        actor: str,
        comment: str | None = None,
        request_id: str | None = None,
    ) -> ExecutionStatus:
        """Approve the execution's approval request and continue it.

        Raises:
            AlreadyDecided: If the request was already decided or expired.
            NotFound: If the execution has no approval request.
        """
        return await self._decide(execution_id, "approved", actor, comment, request_id)

    async def reject(
        self,
        execution_id: str,
        actor: str,
        comment: str | None = None,
        request_id: str | None = None,
    ) -> ExecutionStatus:
        """Reject the execution's approval request; the execution fails."""
        return await self._decide(execution_id, "rejected", actor, comment, request_id)

    async def _decide(
        self,
        execution_id: str,
        decision: str,
        actor: str,
        comment: str | None,
        request_id: str | None,
    ) -> ExecutionStatus:
        execution = await self.get_execution(execution_id)
        request = await self._approval_for(execution_id, request_id)
        try:
            request = await self.gate.decide(request.id, decision, actor, comment)
        except AlreadyDecided as exc:
            # A late decision still settles an execution left waiting on an expired request.
            if exc.state == "expired" and execution.status == "suspended":
                await self._settle_expired(execution, request)
            raise
        await self._audit.record(
            execution, "approval_decided", request.state,
            stage=request.stage, action=request.action, actor=actor, detail=comment,
        )
        return await self.run(execution_id)

    async def _approval_for(
        self, execution_id: str, request_id: str | None
    ) -> ApprovalRequest:
        if request_id is not None:
            request = await self.gate.get(request_id)
            if request.execution_id != execution_id:
                raise NotFound(
                    f"Approval request {request_id} does not belong to {execution_id}"
                )
            return request
        requests = await self._state.list_approvals(execution_id=execution_id)
        if not requests:
            raise NotFound(f"Execution {execution_id} has no approval request")
        return requests[-1]

    async def expire_overdue(self, now: datetime | None = None) -> list[str]:
        """Expire overdue approvals and fail their executions.

        Also settles suspended executions whose request already expired
        through a read (e.g. a decision that arrived too late).
        """
        overdue = {r.execution_id: r for r in await self.gate.expire_overdue(now)}
        for execution in await self._state.list_executions(statuses=("suspended",)):
            if execution.id in overdue:
                continue
            requests = await self._state.list_approvals(execution_id=execution.id)
            if requests and requests[-1].state == "expired":
                overdue[execution.id] = requests[-1]

        execution_ids: list[str] = []
        for execution_id, request in overdue.items():
            execution = await self._state.get_execution(execution_id)
            if execution is None or execution.status != "suspended":
                continue
            await self._settle_expired(execution, request)
            execution_ids.append(execution_id)
        return execution_ids

    async def _settle_expired(self, execution: Execution, request: ApprovalRequest) -> None:
        await self._audit.record(
            execution, "approval_decided", "expired",
            stage=request.stage, action=request.action,
        )
        await self.run(execution.id)

    # === CANCELLATION ===

    async def cancel(
        self, execution_id: str, reason: str = "cancelled by operator"
    ) -> ExecutionStatus:
        """Cancel an execution at its next stage boundary."""
        execution = await self.get_execution(execution_id)
        if execution.is_terminal:
            return execution.status
        return await self._request_cancel(execution_id, reason)

    async def _request_cancel(
        self, execution_id: str, reason: str, superseded_by: str | None = None
    ) -> ExecutionStatus:
        self._pending_cancel[execution_id] = (reason, superseded_by)
        lock = self._lock(execution_id)
        if lock.locked():
            logger.info("Execution %s is mid-stage; cancel deferred: %s", execution_id, reason)
            return "running"
        async with lock:
            execution = await self.get_execution(execution_id)
            if execution.is_terminal:
                self._pending_cancel.pop(execution_id, None)
                return execution.status
            await self._apply_pending_cancel(execution)
        if superseded_by is None:
            await self._run_next_queued(execution.pipeline_name)
        return execution.status

    async def _apply_pending_cancel(self, execution: Execution) -> bool:
        pending = self._pending_cancel.pop(execution.id, None)
        if pending is None and not execution.cancel_requested:
            return False
        reason, superseded_by = pending or (
            execution.cancel_reason or "cancelled", execution.superseded_by
        )

        execution.cancel_requested = True
        execution.cancel_reason = reason
        execution.superseded_by = superseded_by
        record = execution.stage_record(execution.current_stage)
        if record is not None and record.status in ("running", "suspended"):
            record.status = "cancelled"
            record.finished_at = utcnow()

        request = await self.gate.supersede(execution.id, reason)
        await self._finish(execution, "cancelled", stage=record.name if record else "-", detail=reason)
        if request is not None:
            await self.gate.announce_outcome(request, "superseded", reason)
        return True

    # === RECOVERY & RETENTION ===

    async def resume_pending(self) -> dict[str, ExecutionStatus]:
        """Continue every in-flight execution from the state store (startup recovery)."""
        results: dict[str, ExecutionStatus] = {}
        for execution in await self._state.list_executions(statuses=IN_FLIGHT_STATUSES):
            if execution.status == "suspended":
                requests = await self._state.list_approvals(execution_id=execution.id)
                if requests:
                    request = await self.gate.get(requests[-1].id)
                    if request.state == "pending":
                        results[execution.id] = "suspended"
                        continue
            results[execution.id] = await self.run(execution.id)
        logger.info("Resumed %d in-flight executions", len(results))
        return results

    async def archive_expired(
        self, retention_days: int, now: datetime | None = None
    ) -> list[str]:
        """Drop artifact namespaces of terminal executions past retention."""
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        archived: list[str] = []
        for execution in await self._state.list_executions(statuses=TERMINAL_STATUSES):
            if execution.archived or execution.finished_at is None:
                continue
            if execution.finished_at > cutoff:
                continue
            async with self._lock(execution.id):
                current = await self.get_execution(execution.id)
                count = await self._artifacts.delete_namespace(current.id)
                current.archived = True
                await self._state.save_execution(current)
                await self._audit.record(
                    current, "execution_archived", "archived", detail=f"{count} artifacts removed"
                )
            self._locks.pop(execution.id, None)
            archived.append(execution.id)
        return archived

    # === REPORTING ===

    async def history(self, execution_id: str) -> list[AuditRecord]:
        await self.get_execution(execution_id)
        return await self._audit.history(execution_id)

    async def report(self, execution_id: str) -> ExecutionReport:
        execution = await self.get_execution(execution_id)
        pipeline = await self.get_pipeline(execution.pipeline_name, execution.pipeline_version)
        approvals = await self._state.list_approvals(execution_id=execution_id)
        return build_report(
            execution, pipeline.definition, approvals, self._console_url_template
        )

    async def stats(self, pipeline_name: str) -> PipelineStats:
        executions = await self._state.list_executions(pipeline_name)
        return compute_stats(pipeline_name, executions)

    def console_url(self, pipeline_name: str, execution_id: str) -> str:
        return self._console_url_template.format(
            pipeline=pipeline_name, execution_id=execution_id
        )

    # === INTERNALS ===

    def _lock(self, execution_id: str) -> asyncio.Lock:
        return self._locks.setdefault(execution_id, asyncio.Lock())

    async def _run_next_queued(self, pipeline_name: str) -> None:
        queued = await self._state.list_executions(pipeline_name, ("queued",))
        if queued:
            await self.run(queued[0].id)

    async def _can_promote(self, execution: Execution) -> bool:
        active = await self._state.list_executions(
            execution.pipeline_name, ("running", "suspended")
        )
        if any(e.id != execution.id for e in active):
            return False
        queued = await self._state.list_executions(execution.pipeline_name, ("queued",))
        return bool(queued) and queued[0].id == execution.id

    async def _step(
        self, execution: Execution, definition: PipelineDefinition
    ) -> ExecutionStatus:
        index = execution.current_stage
        if index >= len(definition.stages):
            return await self._finish(execution, "succeeded")

        stage = definition.stages[index]
        set_stage_context(stage.name)

        missing = await self._runner.missing_inputs(execution, definition, index)
        if missing:
            execution.failure = FailureInfo(
                stage=stage.name,
                error_type=ConfigurationError.error_type,
                message=f"Input artifacts missing before stage start: {missing}",
            )
            logger.error("Stage %s cannot start: missing inputs %s", stage.name, missing)
            return await self._finish(execution, "failed", stage=stage.name,
                                      detail=execution.failure.message)

        record = execution.stage_record(index)
        if record is None:
            record = StageRecord(name=stage.name, index=index)
            execution.stages.append(record)
            await self._audit.record(execution, "stage_started", "running", stage=stage.name)
        previous_status = record.status

        record = await self._runner.run_stage(execution, definition, index, record)

        if record.status == "failed":
            failed = next(
                record.actions[a.name] for a in stage.actions
                if record.actions[a.name].status == "failed"
            )
            execution.failure = FailureInfo(
                stage=stage.name,
                action=failed.name,
                error_type=failed.error_type or "InternalError",
                message=failed.error or "",
            )
            await self._audit.record(
                execution, "stage_failed", "failed", stage=stage.name,
                action=failed.name, detail=f"{failed.error_type}: {failed.error}",
            )
            self._pending_cancel.pop(execution.id, None)
            status = await self._finish(execution, "failed")
            await self._announce_approval_failure(record, execution.failure)
            return status

        if record.status == "suspended":
            if await self._apply_pending_cancel(execution):
                return execution.status
            execution.status = "suspended"
            await self._state.save_execution(execution)
            if previous_status != "suspended":
                pending = [r.approval_id for r in record.actions.values() if r.status == "pending"]
                await self._audit.record(
                    execution, "stage_suspended", "suspended", stage=stage.name,
                    detail=f"awaiting approval {', '.join(filter(None, pending))}",
                )
            return "suspended"

        await self._audit.record(execution, "stage_succeeded", "succeeded", stage=stage.name)
        if index + 1 >= len(definition.stages):
            return await self._finish(execution, "succeeded")

        execution.move_to_stage(index + 1)
        execution.status = "running"
        if await self._apply_pending_cancel(execution):
            return execution.status
        await self._state.save_execution(execution)
        return "running"

    async def _finish(
        self,
        execution: Execution,
        status: ExecutionStatus,
        stage: str = "-",
        detail: str | None = None,
    ) -> ExecutionStatus:
        execution.status = status
        execution.finished_at = utcnow()
        await self._state.save_execution(execution)
        self._locks.pop(execution.id, None)
        if detail is None and execution.failure is not None and status == "failed":
            detail = f"{execution.failure.error_type}: {execution.failure.message}"
        await self._audit.record(
            execution, f"execution_{status}", status, stage=stage, detail=detail
        )
        logger.info("Execution %s %s", execution.id, status)
        return status

    async def _announce_approval_failure(
        self, record: StageRecord, failure: FailureInfo
    ) -> None:
        for result in record.actions.values():
            if result.type != "manual_approval" or not result.approval_id:
                continue
            request = await self._state.get_approval(result.approval_id)
            if request is not None:
                await self.gate.announce_outcome(
                    request, "failed", f"{failure.error_type}: {failure.message}"
                )
