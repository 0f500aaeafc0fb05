# tests/unit/core/test_unit_models.py - v1
"""Tests for core/models.py - pipeline, execution and approval records."""

from __future__ import annotations

import pytest

from stagegate.core.models import (
    ActionDeclaration,
    ActionResult,
    ApprovalRequest,
    ArtifactPath,
    ArtifactRef,
    Execution,
    PermissionGrant,
    PipelineDefinition,
    SourceSpec,
    StageDeclaration,
    StageRecord,
    TriggerEvent,
)


def _definition(name: str = "svc") -> PipelineDefinition:
    return PipelineDefinition(
        name=name,
        source=SourceSpec(repository="acme/svc"),
        stages=[
            StageDeclaration(
                name="Source",
                actions=[ActionDeclaration(name="Fetch", type="source", outputs=["Src"])],
            ),
            StageDeclaration(
                name="Build",
                actions=[
                    ActionDeclaration(name="Compile", type="build", inputs=["Src"], outputs=["Out"])
                ],
            ),
        ],
    )


class TestPermissionGrant:
    def test_capabilities_cross_product(self):
        grant = PermissionGrant(
            principal="action:p/s/a",
            actions=("artifact:Get", "artifact:Put"),
            resources=("artifact:*/A", "artifact:*/B"),
        )
        assert len(grant.capabilities()) == 4
        assert ("artifact:Put", "artifact:*/B") in grant.capabilities()

    def test_frozen(self):
        grant = PermissionGrant(principal="p", actions=("x:Y",), resources=("x:z",))
        with pytest.raises(Exception):
            grant.principal = "other"


class TestPipelineDefinition:
    def test_fingerprint_stable(self):
        assert _definition().fingerprint() == _definition().fingerprint()

    def test_fingerprint_changes_with_content(self):
        assert _definition("a").fingerprint() != _definition("b").fingerprint()

    def test_find_action(self):
        idx, action = _definition().find_action("Compile")
        assert idx == 1
        assert action.type == "build"

    def test_find_action_missing(self):
        assert _definition().find_action("Nope") is None

    def test_default_branch(self):
        assert _definition().source.branch == "main"

    def test_unknown_action_type_rejected(self):
        with pytest.raises(ValueError):
            ActionDeclaration(name="X", type="lambda")


class TestTriggerEvent:
    def test_strips_heads_prefix(self):
        event = TriggerEvent(repository="r", branch="refs/heads/release", commit_ref="abc")
        assert event.branch == "release"

    def test_plain_branch(self):
        assert TriggerEvent(repository="r", branch="main", commit_ref="abc").branch == "main"


class TestArtifactPath:
    def test_parse_double_colon(self):
        path = ArtifactPath.parse("BuildOutput::Dev.template.json")
        assert path.artifact == "BuildOutput"
        assert path.path == "Dev.template.json"

    def test_parse_slash(self):
        path = ArtifactPath.parse("build-out/nested/Dev.template.json")
        assert path.artifact == "build-out"
        assert path.path == "nested/Dev.template.json"

    def test_str_roundtrip(self):
        assert str(ArtifactPath.parse("A::b/c.json")) == "A::b/c.json"

    @pytest.mark.parametrize("value", ["", "NoPath", "::file", "Artifact::"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            ArtifactPath.parse(value)


class TestExecution:
    def test_defaults(self, trigger_event):
        execution = Execution(pipeline_name="svc", pipeline_version=1, trigger=trigger_event)
        assert execution.status == "running"
        assert execution.current_stage == 0
        assert execution.version == 0
        assert execution.is_in_flight
        assert not execution.is_terminal

    def test_terminal(self, sample_execution):
        sample_execution.status = "cancelled"
        assert sample_execution.is_terminal
        assert not sample_execution.is_in_flight

    def test_cursor_moves_forward(self, sample_execution):
        sample_execution.move_to_stage(2)
        sample_execution.move_to_stage(2)
        assert sample_execution.current_stage == 2

    def test_cursor_never_moves_backwards(self, sample_execution):
        sample_execution.move_to_stage(3)
        with pytest.raises(ValueError, match="backwards"):
            sample_execution.move_to_stage(1)

    def test_stage_record_lookup(self, sample_execution):
        sample_execution.stages.append(StageRecord(name="Build", index=1))
        assert sample_execution.stage_record(1).name == "Build"
        assert sample_execution.stage_record(0) is None

    def test_artifact_refs_collects_outputs(self, sample_execution):
        ref = ArtifactRef(execution_id=sample_execution.id, name="Src", digest="d", size=1, uri="u")
        record = StageRecord(name="Source", index=0)
        record.actions["Fetch"] = ActionResult(
            name="Fetch", type="source", status="succeeded", outputs={"Src": ref}
        )
        sample_execution.stages.append(record)
        assert sample_execution.artifact_refs() == {"Src": ref}

    def test_json_roundtrip(self, sample_execution):
        sample_execution.stages.append(StageRecord(name="Source", index=0))
        restored = Execution.model_validate_json(sample_execution.model_dump_json())
        assert restored == sample_execution

    def test_execution_ids_unique(self, trigger_event):
        ids = {
            Execution(pipeline_name="p", pipeline_version=1, trigger=trigger_event).id
            for _ in range(50)
        }
        assert len(ids) == 50


class TestApprovalRequest:
    def test_open_states(self):
        request = ApprovalRequest(
            execution_id="e", pipeline_name="p", stage="Approve", action="A", topic="t"
        )
        assert request.state == "opened"
        assert request.is_open
        request.state = "pending"
        assert request.is_open
        request.state = "approved"
        assert not request.is_open

    def test_request_id_prefix(self):
        request = ApprovalRequest(
            execution_id="e", pipeline_name="p", stage="s", action="a", topic="t"
        )
        assert request.id.startswith("apr_")
