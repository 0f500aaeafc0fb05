# src/tracking/exporter.py - v1
"""Export audit trails and reports to JSON, JSONL and summary text."""

from __future__ import annotations

import logging
from pathlib import Path

from stagegate.core.models import AuditRecord
from stagegate.tracking.models import ExecutionReport, PipelineStats

logger = logging.getLogger(__name__)


def export_report_json(report: ExecutionReport, path: Path) -> None:
    """Write an execution report as formatted JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")


def export_audit_jsonl(records: list[AuditRecord], path: Path) -> int:
    """Write audit records one JSON object per line. Returns the count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        for record in records:
            fh.write(record.model_dump_json() + "\n")
    logger.debug("Exported %d audit records to %s", len(records), path)
    return len(records)


def export_report_summary(report: ExecutionReport) -> str:
    """Human-readable summary of one execution."""
    lines: list[str] = [
        f"=== {report.pipeline_name} v{report.pipeline_version}: {report.execution_id} ===",
        f"Outcome  : {report.outcome}",
        f"Commit   : {report.commit_ref} ({report.repository}:{report.branch})",
        f"Console  : {report.console_url}",
    ]
    if report.current_stage:
        lines.append(f"Stage    : {report.current_stage}")
    if report.duration_seconds is not None:
        lines.append(f"Duration : {report.duration_seconds:.1f}s")
    if report.failure:
        where = report.failure.stage
        if report.failure.action:
            where += f"/{report.failure.action}"
        lines.append(f"Failure  : {report.failure.error_type} at {where}: {report.failure.message}")
    if report.superseded_by:
        lines.append(f"Superseded by {report.superseded_by}")

    lines += ["", "--- Stages ---"]
    for stage in report.stages:
        actions = ", ".join(f"{n}={s}" for n, s in sorted(stage.actions.items()))
        lines.append(f"  {stage.name:20s} | {stage.status:10s} | {actions}")

    for approval in report.approvals:
        decided = f" by {approval.decided_by}" if approval.decided_by else ""
        lines.append(f"  approval {approval.id}: {approval.state}{decided}")
    return "\n".join(lines)


def export_stats_summary(stats: PipelineStats) -> str:
    lines = [
        f"=== Pipeline stats: {stats.pipeline_name} ===",
        f"Executions   : {stats.total_executions}",
        f"Success rate : {stats.success_rate:.0%}",
        f"Avg duration : {stats.avg_duration_seconds:.1f}s",
    ]
    for status, count in sorted(stats.by_status.items()):
        lines.append(f"  {status:10s} {count:4d}")
    if stats.failures_by_stage:
        lines.append("--- Failures by stage ---")
        for stage, count in sorted(stats.failures_by_stage.items()):
            lines.append(f"  {stage:20s} {count:4d}")
    return "\n".join(lines)
