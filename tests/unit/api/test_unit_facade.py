# tests/unit/api/test_unit_facade.py - v1
"""Tests for api/facade.py - controller wiring from Settings."""

from __future__ import annotations

import pytest

from stagegate.api.facade import build_controller
from stagegate.notifications.transports import MemoryTransport
from stagegate.state.json_store import JsonStateStore
from stagegate.state.sqlite_store import SqliteStateStore
from stagegate.storage.local_store import LocalArtifactStore


class TestBuildController:
    def test_defaults_from_settings(self, test_settings):
        controller = build_controller(test_settings)
        assert isinstance(controller.state, JsonStateStore)
        assert isinstance(controller.artifacts, LocalArtifactStore)
        assert isinstance(controller.gate.channel.transport, MemoryTransport)

    def test_sqlite_backend(self, test_settings):
        settings = test_settings.model_copy(update={"state_backend": "sqlite"})
        controller = build_controller(settings)
        try:
            assert isinstance(controller.state, SqliteStateStore)
        finally:
            controller.state.close()

    def test_subscribers_registered(self, test_settings):
        settings = test_settings.model_copy(
            update={"approval_subscribers": ["a@example.com", "b@example.com"]}
        )
        controller = build_controller(settings)
        endpoints = [s.endpoint for s in controller.gate.channel.subscribers("webapp-approvals")]
        assert endpoints == ["a@example.com", "b@example.com"]

    def test_explicit_backends_win(self, test_settings, state_store, artifact_store, channel):
        controller = build_controller(
            test_settings, state=state_store, artifacts=artifact_store, channel=channel
        )
        assert controller.state is state_store
        assert controller.artifacts is artifact_store
        assert controller.gate.channel is channel

    def test_console_url(self, test_settings):
        settings = test_settings.model_copy(
            update={"console_url_template": "https://ci.example.com/{pipeline}/{execution_id}"}
        )
        controller = build_controller(settings)
        assert controller.console_url("webapp", "e1") == "https://ci.example.com/webapp/e1"

    @pytest.mark.asyncio
    async def test_wired_controller_registers(self, controller, delivery_definition):
        pipeline = await controller.register_pipeline(delivery_definition)
        assert pipeline.version == 1
        again = await controller.register_pipeline(delivery_definition)
        assert again.version == 1
