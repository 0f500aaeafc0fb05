# src/tracking/models.py - v1
"""Tracking models: per-execution report and per-pipeline statistics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from stagegate.core.models import ApprovalRequest, FailureInfo


class StageSummary(BaseModel):
    name: str
    status: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    actions: dict[str, str] = Field(default_factory=dict)


class ExecutionReport(BaseModel):
    """Output surface of one execution for external observability tooling."""

    pipeline_name: str
    pipeline_version: int
    execution_id: str
    console_url: str
    outcome: str
    commit_ref: str
    repository: str
    branch: str
    current_stage: str | None = None
    failure: FailureInfo | None = None
    stages: list[StageSummary] = Field(default_factory=list)
    approvals: list[ApprovalRequest] = Field(default_factory=list)
    artifacts: dict[str, str] = Field(default_factory=dict)
    superseded_by: str | None = None
    created_at: datetime
    finished_at: datetime | None = None
    duration_seconds: float | None = None


class PipelineStats(BaseModel):
    """Aggregate outcome counts over a pipeline's executions."""

    pipeline_name: str
    total_executions: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    failures_by_stage: dict[str, int] = Field(default_factory=dict)
    failures_by_error: dict[str, int] = Field(default_factory=dict)
    success_rate: float = 0.0
    avg_duration_seconds: float = 0.0
    last_execution_id: str | None = None
