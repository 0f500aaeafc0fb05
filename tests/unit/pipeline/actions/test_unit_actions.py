# tests/unit/pipeline/actions/test_unit_actions.py - v1
"""Tests for the built-in action executors, run against real collaborators."""

from __future__ import annotations

import json

import pytest

from stagegate.approval.gate import ApprovalGate
from stagegate.build.runner import BuildRunner
from stagegate.core.errors import ApprovalExpired, ApprovalRejected, PermissionDenied
from stagegate.core.models import ActionResult, StageRecord
from stagegate.deploy.executor import DeploymentExecutor
from stagegate.pipeline.actions.build import BuildAction
from stagegate.pipeline.actions.deploy import DeployAction
from stagegate.pipeline.actions.manual_approval import ManualApprovalAction
from stagegate.pipeline.actions.source import SourceAction
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionServices
from stagegate.security.permissions import ScopedPrincipal, principal_for
from stagegate.security.scoped_store import ScopedArtifactStore
from stagegate.storage.bundles import read_member


@pytest.fixture
def gate(state_store, channel) -> ApprovalGate:
    return ApprovalGate(store=state_store, channel=channel, default_timeout_s=None)


@pytest.fixture
def services(sources, deploy_target, gate) -> ActionServices:
    return ActionServices(
        sources=sources,
        builder=BuildRunner(timeout_s=60),
        deployer=DeploymentExecutor(deploy_target),
        gate=gate,
        console_url=lambda pipeline, execution_id: f"https://ci.example.com/{pipeline}/{execution_id}",
    )


@pytest.fixture
def make_context(delivery_definition, sample_execution, artifact_store, services):
    def _make(stage_index: int, previous: ActionResult | None = None, grants=None):
        stage = delivery_definition.stages[stage_index]
        action = stage.actions[0]
        principal = ScopedPrincipal(
            principal_for(delivery_definition.name, stage.name, action.name),
            action.grants if grants is None else grants,
        )
        return ActionContext(
            execution=sample_execution,
            definition=delivery_definition,
            stage=stage,
            stage_index=stage_index,
            action=action,
            artifacts=ScopedArtifactStore(artifact_store, principal, sample_execution.id),
            principal=principal,
            services=services,
            previous=previous,
        )

    return _make


class TestSourceAction:
    @pytest.mark.asyncio
    async def test_snapshot_written(self, make_context, sources, artifact_store, sample_execution):
        outcome = await SourceAction().execute(make_context(0))
        assert list(outcome.outputs) == ["SourceOutput"]
        assert sources.fetched == [("acme/webapp", "c0ffee1")]
        payload = await artifact_store.get(sample_execution.id, "SourceOutput")
        assert read_member(payload, "README.md") == b"# webapp\n"

    @pytest.mark.asyncio
    async def test_requires_fetch_grant(self, make_context, sources):
        with pytest.raises(PermissionDenied):
            await SourceAction().execute(make_context(0, grants=[]))
        assert sources.fetched == []

    def test_rejects_inputs(self, delivery_definition):
        action = delivery_definition.stages[0].actions[0].model_copy(update={"inputs": ["X"]})
        errors = SourceAction().validate_declaration(delivery_definition, "Source", action)
        assert errors == ["Source/Source_Fetch: source action takes no inputs"]


class TestBuildAction:
    @pytest.mark.asyncio
    async def test_build_publishes_output(self, make_context, artifact_store, sample_execution):
        await SourceAction().execute(make_context(0))
        outcome = await BuildAction().execute(make_context(1))
        assert list(outcome.outputs) == ["BuildOutput"]
        payload = await artifact_store.get(sample_execution.id, "BuildOutput")
        assert read_member(payload, "build.txt") == b"hello from c0ffee1\n"
        assert "installing" in outcome.diagnostics

    def test_declaration_shape(self, delivery_definition):
        action = delivery_definition.stages[1].actions[0].model_copy(
            update={"outputs": ["A", "B"]}
        )
        errors = BuildAction().validate_declaration(delivery_definition, "Build", action)
        assert errors == ["Build/Build_and_Test: build action produces exactly one output"]

    def test_unknown_configuration_key(self, delivery_definition):
        action = delivery_definition.stages[1].actions[0].model_copy(
            update={"configuration": {"image": "ubuntu"}}
        )
        errors = BuildAction().validate_declaration(delivery_definition, "Build", action)
        assert "invalid configuration" in errors[0]


class TestDeployAction:
    @pytest.mark.asyncio
    async def test_deploy_record(self, make_context, artifact_store, sample_execution,
                                 deploy_target):
        await SourceAction().execute(make_context(0))
        await BuildAction().execute(make_context(1))
        outcome = await DeployAction().execute(make_context(2))
        assert outcome.diagnostics == "2 changes"

        record = json.loads(await artifact_store.get(sample_execution.id, "DevDeployment"))
        assert record["environment"] == "dev"
        assert record["stack_name"] == "DevStack"
        assert record["template_ref"] == "BuildOutput::DevStack.template.json"
        state = await deploy_target.describe("dev")
        assert state.template_digest == record["template_digest"]

    @pytest.mark.asyncio
    async def test_prod_overrides_applied(self, make_context, deploy_target):
        await SourceAction().execute(make_context(0))
        await BuildAction().execute(make_context(1))
        await DeployAction().execute(make_context(4))
        state = await deploy_target.describe("prod")
        assert state.resources["Table"]["Properties"]["Stage"] == "prod"

    def test_template_must_come_from_input(self, delivery_definition):
        action = delivery_definition.stages[2].actions[0].model_copy(update={"inputs": []})
        errors = DeployAction().validate_declaration(delivery_definition, "Deploy_Dev", action)
        assert any("not a declared input" in e for e in errors)


class TestManualApprovalAction:
    @pytest.mark.asyncio
    async def test_first_entry_opens_request(self, make_context, gate, transport, channel):
        outcome = await ManualApprovalAction().execute(make_context(3))
        assert outcome.status == "suspended"
        request = await gate.get(outcome.approval_id)
        assert request.state == "pending"
        assert request.topic == "webapp-approvals"
        assert request.review_url.startswith("https://ci.example.com/webapp/")
        assert "Commit: c0ffee1 on acme/webapp:main" in request.context
        await channel.drain()
        assert len(transport.delivered_to("reviewer@example.com")) == 1

    @pytest.mark.asyncio
    async def test_context_lists_prior_outputs(self, make_context, gate, sample_execution):
        await SourceAction().execute(make_context(0))
        await BuildAction().execute(make_context(1))
        outcome = await DeployAction().execute(make_context(2))
        record = StageRecord(name="Deploy_Dev", index=2, status="succeeded")
        record.actions["Deploy_to_Dev"] = ActionResult(
            name="Deploy_to_Dev", type="deploy", status="succeeded", outputs=outcome.outputs
        )
        sample_execution.stages.append(record)

        opened = await ManualApprovalAction().execute(make_context(3))
        request = await gate.get(opened.approval_id)
        assert "Previous stage: Deploy_Dev (succeeded)" in request.context
        assert "Deploy_to_Dev -> DevDeployment sha256:" in request.context

    @pytest.mark.asyncio
    async def test_reentry_maps_decision(self, make_context, gate):
        opened = await ManualApprovalAction().execute(make_context(3))
        previous = ActionResult(
            name="Approve_Production_Deployment", type="manual_approval",
            approval_id=opened.approval_id,
        )
        still_waiting = await ManualApprovalAction().execute(make_context(3, previous))
        assert still_waiting.status == "suspended"

        await gate.decide(opened.approval_id, "approve", "reviewer@example.com")
        outcome = await ManualApprovalAction().execute(make_context(3, previous))
        assert outcome.status == "succeeded"
        assert outcome.diagnostics == "approved by reviewer@example.com"

    @pytest.mark.asyncio
    async def test_rejection_raises(self, make_context, gate):
        opened = await ManualApprovalAction().execute(make_context(3))
        await gate.decide(opened.approval_id, "reject", "lead", "not today")
        previous = ActionResult(
            name="Approve_Production_Deployment", type="manual_approval",
            approval_id=opened.approval_id,
        )
        with pytest.raises(ApprovalRejected, match="Rejected by lead \\(not today\\)"):
            await ManualApprovalAction().execute(make_context(3, previous))

    @pytest.mark.asyncio
    async def test_expiry_raises(self, make_context, gate, state_store):
        opened = await ManualApprovalAction().execute(make_context(3))
        request = await state_store.get_approval(opened.approval_id)
        request.state = "expired"
        await state_store.save_approval(request)
        previous = ActionResult(
            name="Approve_Production_Deployment", type="manual_approval",
            approval_id=opened.approval_id,
        )
        with pytest.raises(ApprovalExpired):
            await ManualApprovalAction().execute(make_context(3, previous))

    def test_outputs_rejected(self, delivery_definition):
        action = delivery_definition.stages[3].actions[0].model_copy(update={"outputs": ["X"]})
        errors = ManualApprovalAction().validate_declaration(delivery_definition, "Approve", action)
        assert errors == ["Approve/Approve_Production_Deployment: approval actions produce no outputs"]
