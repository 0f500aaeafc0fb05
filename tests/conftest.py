# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides temp-directory stores, an in-memory notification channel, a
static source provider serving a small buildable repository, and the
standard delivery pipeline definition. No network or VCS access.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stagegate.api.facade import build_controller
from stagegate.build.sources import BaseSourceProvider
from stagegate.config.pipelines import delivery_pipeline
from stagegate.config.settings import Settings
from stagegate.core.errors import SourceFetchFailed
from stagegate.core.models import Execution, PipelineDefinition, TriggerEvent
from stagegate.core.retry import RetryConfig
from stagegate.deploy.targets import LocalDeploymentTarget
from stagegate.notifications.channel import NotificationChannel
from stagegate.notifications.transports import MemoryTransport
from stagegate.pipeline.controller import PipelineController
from stagegate.state.json_store import JsonStateStore
from stagegate.storage.bundles import zip_files
from stagegate.storage.local_store import LocalArtifactStore

REPOSITORY = "acme/webapp"
APPROVAL_TOPIC = "webapp-approvals"
REVIEWER = "reviewer@example.com"

BUILDSPEC = """\
version: 0.2
env:
  variables:
    GREETING: hello
phases:
  install:
    commands:
      - echo "installing"
  build:
    commands:
      - mkdir -p out
      - cp DevStack.template.json ProdStack.template.json out/
      - echo "$GREETING from $STAGEGATE_COMMIT_REF" > out/build.txt
artifacts:
  base-directory: out
  files:
    - "*.template.json"
    - build.txt
"""


def make_template(table_name: str = "orders") -> bytes:
    return json.dumps(
        {
            "Parameters": {"Stage": {"Type": "String", "Default": "dev"}},
            "Resources": {
                "Table": {
                    "Type": "App::Store::Table",
                    "Properties": {"Name": table_name, "Stage": {"Ref": "Stage"}},
                },
                "Api": {
                    "Type": "App::Http::Endpoint",
                    "Properties": {"Path": "/orders"},
                },
            },
        },
        sort_keys=True,
    ).encode("utf-8")


# === FIXTURES: Sample data ===


@pytest.fixture
def source_files() -> dict[str, bytes]:
    """Files of the sample repository at its head commit."""
    return {
        "buildspec.yml": BUILDSPEC.encode("utf-8"),
        "DevStack.template.json": make_template(),
        "ProdStack.template.json": make_template(),
        "README.md": b"# webapp\n",
    }


@pytest.fixture
def template_factory():
    """``make_template(table_name)``: template bytes with a configurable table name."""
    return make_template


@pytest.fixture
def trigger_event() -> TriggerEvent:
    return TriggerEvent(repository=REPOSITORY, branch="main", commit_ref="c0ffee1")


@pytest.fixture
def delivery_definition() -> PipelineDefinition:
    """Standard five-stage pipeline with exactly-scoped grants."""
    return delivery_pipeline(
        name="webapp",
        repository=REPOSITORY,
        approval_topic=APPROVAL_TOPIC,
        approval_timeout_s=3600,
        parameter_overrides={"prod": {"Stage": "prod"}},
    )


@pytest.fixture
def sample_execution(trigger_event: TriggerEvent) -> Execution:
    return Execution(pipeline_name="webapp", pipeline_version=1, trigger=trigger_event)


# === FIXTURES: Backends ===


class StaticSourceProvider(BaseSourceProvider):
    """Serves fixed file sets per commit; unknown commits fall back to ``default``."""

    def __init__(self, default: dict[str, bytes]) -> None:
        self.default = default
        self.commits: dict[str, dict[str, bytes]] = {}
        self.fetched: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "static"

    async def fetch(self, repository: str, commit_ref: str) -> bytes:
        self.fetched.append((repository, commit_ref))
        if repository != REPOSITORY:
            raise SourceFetchFailed(f"Repository not found: {repository!r}")
        return zip_files(self.commits.get(commit_ref, self.default))


@pytest.fixture
def state_store(tmp_path: Path) -> JsonStateStore:
    return JsonStateStore(tmp_path / "state")


@pytest.fixture
def artifact_store(tmp_path: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def deploy_target(tmp_path: Path) -> LocalDeploymentTarget:
    return LocalDeploymentTarget(tmp_path / "environments")


@pytest.fixture
def transport() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture
def channel(transport: MemoryTransport) -> NotificationChannel:
    """Channel with instant retries and one reviewer on the approval topic."""
    ch = NotificationChannel(
        transport, retry=RetryConfig(max_retries=2, base_delay_s=0.0, jitter=False)
    )
    ch.subscribe(APPROVAL_TOPIC, REVIEWER)
    return ch


@pytest.fixture
def sources(source_files: dict[str, bytes]) -> StaticSourceProvider:
    return StaticSourceProvider(source_files)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        state_root=tmp_path / "state",
        artifact_root=tmp_path / "artifacts",
        deploy_root=tmp_path / "environments",
        notification_backend="memory",
        approval_topic=APPROVAL_TOPIC,
        build_timeout_s=60,
    )


@pytest.fixture
def make_controller(
    test_settings: Settings,
    state_store: JsonStateStore,
    artifact_store: LocalArtifactStore,
    deploy_target: LocalDeploymentTarget,
    channel: NotificationChannel,
    sources: StaticSourceProvider,
):
    """Factory for controllers sharing the same stores (simulates restarts)."""

    def _make(supersede_policy: str = "supersede") -> PipelineController:
        settings = test_settings.model_copy(update={"supersede_policy": supersede_policy})
        return build_controller(
            settings,
            state=state_store,
            artifacts=artifact_store,
            channel=channel,
            target=deploy_target,
            sources=sources,
        )

    return _make


@pytest.fixture
def controller(make_controller) -> PipelineController:
    return make_controller()
