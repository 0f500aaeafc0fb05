# tests/integration/pipeline/test_int_delivery_flow.py - v1
"""End-to-end runs of the five-stage delivery pipeline.

Source -> Build -> Deploy_Dev -> Approve -> Deploy_Prod, driven through
the controller with real build commands and the local deployment target.
"""

from __future__ import annotations

import hashlib
import json
from datetime import timedelta

import pytest

from stagegate.core.errors import AlreadyDecided
from stagegate.core.ids import utcnow
from stagegate.core.models import TriggerEvent
from stagegate.storage.bundles import read_member

pytestmark = pytest.mark.slow


def _event(commit: str) -> TriggerEvent:
    return TriggerEvent(repository="acme/webapp", branch="main", commit_ref=commit)


class TestApprovalPath:
    @pytest.mark.asyncio
    async def test_approve_deploys_to_prod(self, controller, delivery_definition, trigger_event,
                                           deploy_target, channel, approval_messages):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)

        assert await controller.run(execution_id) == "suspended"
        assert (await deploy_target.describe("dev")).revision == 1
        assert await deploy_target.describe("prod") is None

        await channel.drain()
        assert approval_messages() == ["[webapp] Approval needed: Approve"]

        assert await controller.approve(execution_id, "lead", "ship it") == "succeeded"
        prod = await deploy_target.describe("prod")
        assert prod.execution_id == execution_id
        assert prod.parameters == {"Stage": "prod"}

        report = await controller.report(execution_id)
        assert report.outcome == "succeeded"
        assert report.approvals[0].state == "approved"
        assert report.approvals[0].decided_by == "lead"

    @pytest.mark.asyncio
    async def test_audit_order(self, controller, delivery_definition, trigger_event):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)
        await controller.approve(execution_id, "lead")

        history = await controller.history(execution_id)
        assert [(r.stage, r.event) for r in history] == [
            ("-", "execution_started"),
            ("Source", "stage_started"), ("Source", "stage_succeeded"),
            ("Build", "stage_started"), ("Build", "stage_succeeded"),
            ("Deploy_Dev", "stage_started"), ("Deploy_Dev", "stage_succeeded"),
            ("Approve", "stage_started"), ("Approve", "stage_suspended"),
            ("Approve", "approval_decided"), ("Approve", "stage_succeeded"),
            ("Deploy_Prod", "stage_started"), ("Deploy_Prod", "stage_succeeded"),
            ("-", "execution_succeeded"),
        ]
        decided = history[9]
        assert (decided.actor, decided.outcome) == ("lead", "approved")

    @pytest.mark.asyncio
    async def test_artifacts_pass_unchanged(self, controller, delivery_definition,
                                            trigger_event, artifact_store, source_files):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)

        execution = await controller.get_execution(execution_id)
        refs = execution.artifact_refs()
        for name in ("SourceOutput", "BuildOutput", "DevDeployment"):
            payload = await artifact_store.get(execution_id, name)
            assert hashlib.sha256(payload).hexdigest() == refs[name].digest

        build = await artifact_store.get(execution_id, "BuildOutput")
        assert read_member(build, "DevStack.template.json") == source_files["DevStack.template.json"]
        assert read_member(build, "build.txt") == b"hello from c0ffee1\n"

        record = json.loads(await artifact_store.get(execution_id, "DevDeployment"))
        assert record["template_ref"] == "BuildOutput::DevStack.template.json"


class TestTerminalDecisions:
    @pytest.mark.asyncio
    async def test_reject_fails_without_prod(self, controller, delivery_definition,
                                             trigger_event, deploy_target, channel,
                                             approval_messages):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)

        assert await controller.reject(execution_id, "lead", "broken login") == "failed"
        execution = await controller.get_execution(execution_id)
        assert execution.failure.stage == "Approve"
        assert execution.failure.error_type == "ApprovalRejected"
        assert "broken login" in execution.failure.message
        assert await deploy_target.describe("prod") is None

        await channel.drain()
        assert approval_messages()[-1] == "[webapp] Approve failed"

    @pytest.mark.asyncio
    async def test_expiry_fails_and_notifies(self, controller, delivery_definition,
                                             trigger_event, deploy_target, channel,
                                             approval_messages):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)

        expired = await controller.expire_overdue(now=utcnow() + timedelta(hours=2))
        assert expired == [execution_id]
        execution = await controller.get_execution(execution_id)
        assert execution.status == "failed"
        assert execution.failure.error_type == "ApprovalExpired"
        assert await deploy_target.describe("prod") is None

        await channel.drain()
        subjects = approval_messages()
        assert len(subjects) == 2
        assert "failed" in subjects[1]

    @pytest.mark.asyncio
    async def test_late_decision_fails_execution(self, controller, delivery_definition,
                                                 trigger_event, channel, approval_messages):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)
        [request] = await controller.state.list_approvals(execution_id=execution_id)
        request.expires_at = utcnow() - timedelta(seconds=1)
        await controller.state.save_approval(request)

        with pytest.raises(AlreadyDecided) as exc_info:
            await controller.approve(execution_id, "lead")
        assert exc_info.value.state == "expired"

        execution = await controller.get_execution(execution_id)
        assert execution.status == "failed"
        assert execution.failure.error_type == "ApprovalExpired"
        await channel.drain()
        assert "failed" in approval_messages()[-1]

    @pytest.mark.asyncio
    async def test_sweep_settles_request_expired_on_read(self, controller, delivery_definition,
                                                         trigger_event):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)
        [request] = await controller.state.list_approvals(execution_id=execution_id)
        await controller.gate.get(request.id, now=utcnow() + timedelta(hours=2))
        assert await controller.status(execution_id) == "suspended"

        assert await controller.expire_overdue() == [execution_id]
        assert await controller.status(execution_id) == "failed"
        assert await controller.expire_overdue() == []

    @pytest.mark.asyncio
    async def test_not_yet_overdue(self, controller, delivery_definition, trigger_event):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)
        assert await controller.expire_overdue(now=utcnow() + timedelta(minutes=30)) == []
        assert await controller.status(execution_id) == "suspended"

    @pytest.mark.asyncio
    async def test_decision_is_single(self, controller, delivery_definition, trigger_event):
        await controller.register_pipeline(delivery_definition)
        execution_id = await controller.start("webapp", trigger_event)
        await controller.run(execution_id)
        await controller.approve(execution_id, "lead")

        with pytest.raises(AlreadyDecided):
            await controller.approve(execution_id, "someone-else")
        with pytest.raises(AlreadyDecided):
            await controller.reject(execution_id, "someone-else")
        assert await controller.status(execution_id) == "succeeded"


class TestFailures:
    @pytest.mark.asyncio
    async def test_build_failure_stops_before_deploy(self, controller, delivery_definition,
                                                     sources, source_files, deploy_target):
        broken = dict(source_files)
        broken["buildspec.yml"] = b"version: 0.2\nphases:\n  build:\n    commands:\n      - exit 7\n"
        sources.commits["bad1"] = broken
        await controller.register_pipeline(delivery_definition)

        execution_id = await controller.start("webapp", _event("bad1"))
        assert await controller.run(execution_id) == "failed"

        execution = await controller.get_execution(execution_id)
        assert (execution.failure.stage, execution.failure.error_type) == ("Build", "BuildFailed")
        result = execution.stage_record(1).actions["Build_and_Test"]
        assert "exit 7" in result.diagnostics
        assert execution.stage_record(2) is None
        assert await deploy_target.describe("dev") is None

    @pytest.mark.asyncio
    async def test_unknown_repository_fails_source(self, controller, delivery_definition,
                                                   sources):
        definition = delivery_definition.model_copy(deep=True)
        definition.name = "ghost"
        definition.source.repository = "acme/ghost"
        await controller.register_pipeline(definition, scope_grants=True)

        execution_id = await controller.start(
            "ghost", TriggerEvent(repository="acme/ghost", branch="main", commit_ref="abc")
        )
        assert await controller.run(execution_id) == "failed"
        failure = (await controller.get_execution(execution_id)).failure
        assert failure.error_type == "SourceFetchFailed"
        assert sources.fetched == [("acme/ghost", "abc")]

    @pytest.mark.asyncio
    async def test_rejected_deploy_keeps_environment(self, controller, delivery_definition,
                                                     sources, source_files, deploy_target,
                                                     trigger_event, broken_template):
        await controller.register_pipeline(delivery_definition)
        first = await controller.start("webapp", trigger_event)
        await controller.run(first)
        before = await deploy_target.describe("dev")

        broken = dict(source_files)
        broken["DevStack.template.json"] = broken_template
        sources.commits["bad2"] = broken
        second = await controller.start("webapp", _event("bad2"))
        assert await controller.run(second) == "failed"

        failure = (await controller.get_execution(second)).failure
        assert (failure.stage, failure.error_type) == ("Deploy_Dev", "DeployFailed")
        after = await deploy_target.describe("dev")
        assert after == before


class TestIdempotentDeploy:
    @pytest.mark.asyncio
    async def test_same_commit_is_noop(self, controller, delivery_definition, trigger_event,
                                       deploy_target):
        await controller.register_pipeline(delivery_definition)
        first = await controller.start("webapp", trigger_event)
        await controller.run(first)
        await controller.approve(first, "lead")

        second = await controller.start("webapp", _event("c0ffee1"))
        assert await controller.run(second) == "suspended"
        execution = await controller.get_execution(second)
        assert execution.stage_record(2).actions["Deploy_to_Dev"].diagnostics == "no changes"
        dev = await deploy_target.describe("dev")
        assert dev.revision == 1
        assert dev.execution_id == first

    @pytest.mark.asyncio
    async def test_new_commit_applies_changes(self, controller, delivery_definition, sources,
                                              source_files, template_factory, trigger_event,
                                              deploy_target):
        await controller.register_pipeline(delivery_definition)
        first = await controller.start("webapp", trigger_event)
        await controller.run(first)

        changed = dict(source_files)
        changed["DevStack.template.json"] = template_factory("invoices")
        sources.commits["beef"] = changed
        second = await controller.start("webapp", _event("beef"))
        await controller.run(second)

        execution = await controller.get_execution(second)
        assert execution.stage_record(2).actions["Deploy_to_Dev"].diagnostics == "1 changes"
        dev = await deploy_target.describe("dev")
        assert dev.revision == 2
        assert dev.resources["Table"]["Properties"]["Name"] == "invoices"
