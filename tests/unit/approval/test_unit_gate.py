# tests/unit/approval/test_unit_gate.py - v1
"""Tests for approval/gate.py - approval request state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from stagegate.approval.gate import ApprovalGate, normalize_decision
from stagegate.core.errors import AlreadyDecided, NotFound, PermissionDenied, PipelineError
from stagegate.core.ids import utcnow
from stagegate.security.permissions import ScopedPrincipal, principal_for

TOPIC = "webapp-approvals"


@pytest.fixture
def gate(state_store, channel) -> ApprovalGate:
    return ApprovalGate(state_store, channel, default_topic=TOPIC, default_timeout_s=3600)


@pytest.fixture
def approval_principal(delivery_definition) -> ScopedPrincipal:
    stage = delivery_definition.stages[3]
    action = stage.actions[0]
    return ScopedPrincipal(principal_for("webapp", stage.name, action.name), action.grants)


async def _open(gate, execution, **kwargs):
    return await gate.open(
        execution, "Approve", "Approve_Production_Deployment",
        configuration={"topic": TOPIC}, **kwargs,
    )


class TestNormalizeDecision:
    @pytest.mark.parametrize(
        "value,expected",
        [("approve", "approved"), ("APPROVED", "approved"), (" reject ", "rejected")],
    )
    def test_aliases(self, value, expected):
        assert normalize_decision(value) == expected

    def test_unknown(self):
        with pytest.raises(ValueError):
            normalize_decision("maybe")


class TestOpen:
    @pytest.mark.asyncio
    async def test_persisted_pending_and_notified(
        self, gate, sample_execution, state_store, transport, channel
    ):
        request = await _open(gate, sample_execution, context="Commit c0ffee1",
                              review_url="http://ci/x")
        await channel.drain()

        stored = await state_store.get_approval(request.id)
        assert stored.state == "pending"
        assert stored.expires_at == stored.created_at + timedelta(seconds=3600)
        [note] = transport.delivered_to("reviewer@example.com")
        assert request.id in note.body
        assert "http://ci/x" in note.body
        assert "Commit c0ffee1" in note.body

    @pytest.mark.asyncio
    async def test_reopen_same_action_reattaches(self, gate, sample_execution, transport, channel):
        first = await _open(gate, sample_execution)
        second = await _open(gate, sample_execution)
        await channel.drain()
        assert first.id == second.id
        assert len(transport.outbox) == 1

    @pytest.mark.asyncio
    async def test_second_open_request_refused(self, gate, sample_execution):
        await _open(gate, sample_execution)
        with pytest.raises(PipelineError, match="already has open approval"):
            await gate.open(sample_execution, "Approve_Again", "Other")

    @pytest.mark.asyncio
    async def test_principal_must_hold_publish(self, gate, sample_execution, approval_principal):
        await _open(gate, sample_execution, principal=approval_principal)
        other = sample_execution.model_copy(update={"id": "exec_other"})
        with pytest.raises(PermissionDenied):
            await gate.open(
                other, "Approve", "Approve_Production_Deployment",
                configuration={"topic": "security-team"}, principal=approval_principal,
            )

    @pytest.mark.asyncio
    async def test_action_timeout_overrides_default(self, gate, sample_execution):
        request = await gate.open(
            sample_execution, "Approve", "A", configuration={"topic": TOPIC, "timeout_s": 60}
        )
        assert request.expires_at - request.created_at == timedelta(seconds=60)


class TestDecide:
    @pytest.mark.asyncio
    async def test_approve(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        decided = await gate.decide(request.id, "approve", "alice", "looks good")
        assert decided.state == "approved"
        assert decided.decided_by == "alice"
        assert decided.comment == "looks good"

    @pytest.mark.asyncio
    async def test_exactly_once(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        await gate.decide(request.id, "reject", "alice")
        with pytest.raises(AlreadyDecided) as exc_info:
            await gate.decide(request.id, "approve", "bob")
        assert exc_info.value.state == "rejected"
        assert (await gate.get(request.id)).decided_by == "alice"

    @pytest.mark.asyncio
    async def test_decision_after_expiry(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        later = utcnow() + timedelta(hours=2)
        with pytest.raises(AlreadyDecided) as exc_info:
            await gate.decide(request.id, "approve", "alice", now=later)
        assert exc_info.value.state == "expired"

    @pytest.mark.asyncio
    async def test_unknown_request(self, gate):
        with pytest.raises(NotFound):
            await gate.decide("apr_missing", "approve", "alice")


class TestExpiry:
    @pytest.mark.asyncio
    async def test_get_applies_timeout(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        assert (await gate.get(request.id)).state == "pending"
        expired = await gate.get(request.id, now=utcnow() + timedelta(hours=2))
        assert expired.state == "expired"

    @pytest.mark.asyncio
    async def test_expire_overdue(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        assert await gate.expire_overdue() == []
        expired = await gate.expire_overdue(now=utcnow() + timedelta(hours=2))
        assert [r.id for r in expired] == [request.id]

    @pytest.mark.asyncio
    async def test_no_timeout_never_expires(self, state_store, channel, sample_execution):
        gate = ApprovalGate(state_store, channel, default_timeout_s=None)
        request = await gate.open(sample_execution, "Approve", "A", configuration={"topic": TOPIC})
        assert request.expires_at is None
        far = utcnow() + timedelta(days=3650)
        assert (await gate.get(request.id, now=far)).state == "pending"


class TestSupersede:
    @pytest.mark.asyncio
    async def test_releases_open_request(self, gate, sample_execution):
        request = await _open(gate, sample_execution)
        released = await gate.supersede(sample_execution.id, "superseded by exec2")
        assert released.id == request.id
        assert (await gate.get(request.id)).state == "superseded"
        with pytest.raises(AlreadyDecided):
            await gate.decide(request.id, "approve", "alice")

    @pytest.mark.asyncio
    async def test_nothing_open(self, gate, sample_execution):
        assert await gate.supersede(sample_execution.id) is None

    @pytest.mark.asyncio
    async def test_announce_outcome(self, gate, sample_execution, transport, channel):
        request = await _open(gate, sample_execution)
        request = await gate.decide(request.id, "reject", "alice")
        await gate.announce_outcome(request, "failed", "ApprovalRejected: no")
        await channel.drain()
        last = transport.delivered_to("reviewer@example.com")[-1]
        assert "failed" in last.subject
        assert "Decided by: alice" in last.body
