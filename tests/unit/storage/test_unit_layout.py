# tests/unit/storage/test_unit_layout.py - v1
"""Tests for storage/layout.py - namespace paths and name validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from stagegate.storage.layout import (
    artifact_key,
    artifact_path,
    namespace_prefix,
    validate_name,
)


class TestValidateName:
    @pytest.mark.parametrize("name", ["BuildOutput", "source-1", "a.b_c", "x" * 128])
    def test_valid(self, name):
        assert validate_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", "../etc", "a/b", ".hidden", "x" * 129, "out.partial", "sp ace"]
    )
    def test_invalid(self, name):
        with pytest.raises(ValueError, match="Invalid artifact name"):
            validate_name(name)

    def test_kind_in_message(self):
        with pytest.raises(ValueError, match="Invalid environment"):
            validate_name("../prod", "environment")


class TestPaths:
    def test_artifact_path(self):
        path = artifact_path(Path("/data"), "exec1", "BuildOutput")
        assert path == Path("/data/executions/exec1/artifacts/BuildOutput")

    def test_artifact_key(self):
        assert artifact_key("pfx/", "exec1", "Src") == "pfx/executions/exec1/artifacts/Src"

    def test_namespace_prefix(self):
        assert namespace_prefix("", "exec1") == "executions/exec1/"

    def test_execution_id_validated(self):
        with pytest.raises(ValueError, match="execution id"):
            artifact_path(Path("/data"), "../other", "Src")
