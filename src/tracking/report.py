# src/tracking/report.py - v1
"""Build ExecutionReports and PipelineStats from stored records."""

from __future__ import annotations

from collections import Counter

from stagegate.core.models import ApprovalRequest, Execution, PipelineDefinition
from stagegate.tracking.models import ExecutionReport, PipelineStats, StageSummary

DEFAULT_CONSOLE_URL = "http://localhost:8080/pipelines/{pipeline}/executions/{execution_id}"


def console_url(template: str, pipeline: str, execution_id: str) -> str:
    return template.format(pipeline=pipeline, execution_id=execution_id)


def build_report(
    execution: Execution,
    definition: PipelineDefinition,
    approvals: list[ApprovalRequest] | None = None,
    console_url_template: str = DEFAULT_CONSOLE_URL,
) -> ExecutionReport:
    """Summarize one execution: pipeline name, console URL, outcome and where it stopped."""
    current = None
    if not execution.is_terminal and execution.current_stage < len(definition.stages):
        current = definition.stages[execution.current_stage].name

    duration = None
    if execution.finished_at is not None:
        duration = (execution.finished_at - execution.created_at).total_seconds()

    return ExecutionReport(
        pipeline_name=execution.pipeline_name,
        pipeline_version=execution.pipeline_version,
        execution_id=execution.id,
        console_url=console_url(console_url_template, execution.pipeline_name, execution.id),
        outcome=execution.status,
        commit_ref=execution.trigger.commit_ref,
        repository=execution.trigger.repository,
        branch=execution.trigger.branch,
        current_stage=current,
        failure=execution.failure,
        stages=[
            StageSummary(
                name=record.name,
                status=record.status,
                started_at=record.started_at,
                finished_at=record.finished_at,
                actions={name: r.status for name, r in record.actions.items()},
            )
            for record in sorted(execution.stages, key=lambda r: r.index)
        ],
        approvals=approvals or [],
        artifacts={name: ref.digest for name, ref in execution.artifact_refs().items()},
        superseded_by=execution.superseded_by,
        created_at=execution.created_at,
        finished_at=execution.finished_at,
        duration_seconds=duration,
    )


def compute_stats(pipeline_name: str, executions: list[Execution]) -> PipelineStats:
    """Aggregate outcomes of a pipeline's executions."""
    by_status = Counter(e.status for e in executions)
    failures = [e.failure for e in executions if e.status == "failed" and e.failure]
    durations = [
        (e.finished_at - e.created_at).total_seconds()
        for e in executions
        if e.finished_at is not None
    ]
    finished = by_status["succeeded"] + by_status["failed"]

    return PipelineStats(
        pipeline_name=pipeline_name,
        total_executions=len(executions),
        by_status=dict(by_status),
        failures_by_stage=dict(Counter(f.stage for f in failures)),
        failures_by_error=dict(Counter(f.error_type for f in failures)),
        success_rate=by_status["succeeded"] / finished if finished else 0.0,
        avg_duration_seconds=sum(durations) / len(durations) if durations else 0.0,
        last_execution_id=executions[-1].id if executions else None,
    )
