# tests/unit/tracking/test_unit_audit.py - v1
"""Tests for tracking/audit.py - AuditTrail."""

from __future__ import annotations

import logging

import pytest

from stagegate.core.models import Execution
from stagegate.tracking.audit import AuditTrail


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_records_in_order(self, state_store, sample_execution):
        trail = AuditTrail(state_store)
        await trail.record(sample_execution, "stage_started", "running", stage="Source")
        await trail.record(sample_execution, "stage_succeeded", "succeeded", stage="Source")
        await trail.record(
            sample_execution, "approval_decided", "approved",
            stage="Approve", action="Approve_Production_Deployment", actor="lead",
        )

        history = await trail.history(sample_execution.id)
        assert [r.event for r in history] == ["stage_started", "stage_succeeded", "approval_decided"]
        assert history[2].actor == "lead"
        assert all(r.pipeline_name == "webapp" for r in history)

    @pytest.mark.asyncio
    async def test_default_scope(self, state_store, sample_execution):
        entry = await AuditTrail(state_store).record(sample_execution, "execution_started", "running")
        assert entry.stage == "-"

    @pytest.mark.asyncio
    async def test_mirrored_to_log(self, state_store, sample_execution, caplog):
        with caplog.at_level(logging.INFO, logger="stagegate.tracking.audit"):
            await AuditTrail(state_store).record(
                sample_execution, "stage_failed", "failed", stage="Build", detail="BuildFailed"
            )
        record = caplog.records[-1]
        assert "stage_failed" in record.getMessage()
        assert record.data["detail"] == "BuildFailed"

    @pytest.mark.asyncio
    async def test_histories_are_separate(self, state_store, sample_execution, trigger_event):
        other = Execution(pipeline_name="webapp", pipeline_version=1, trigger=trigger_event)
        trail = AuditTrail(state_store)
        await trail.record(sample_execution, "execution_started", "running")
        await trail.record(other, "execution_started", "queued")
        assert len(await trail.history(sample_execution.id)) == 1
        assert (await trail.history(other.id))[0].outcome == "queued"
