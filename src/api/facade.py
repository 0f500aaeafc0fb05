# src/api/facade.py - v1
"""Public API facade: wire a PipelineController from Settings.

Usage:
    from stagegate.api.facade import build_controller
    controller = build_controller(settings)
    pipeline = await controller.register_pipeline(definition)
    execution_id = await controller.start(pipeline.name, event)
    await controller.run(execution_id)

Every backend can be passed in explicitly; anything left out is created
from ``settings`` by its factory.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stagegate.approval.gate import ApprovalGate
from stagegate.build.runner import BuildRunner
from stagegate.build.sources import create_source_provider
from stagegate.config.settings import Settings
from stagegate.deploy.executor import DeploymentExecutor
from stagegate.deploy.targets import create_deployment_target
from stagegate.notifications.channel_factory import create_channel
from stagegate.pipeline.controller import PipelineController
from stagegate.pipeline.plugin_kit.models import ActionServices
from stagegate.pipeline.registry import ActionRegistry, default_registry
from stagegate.state.state_factory import create_state_store
from stagegate.storage.store_factory import create_artifact_store
from stagegate.tracking.report import console_url

if TYPE_CHECKING:
    from stagegate.build.sources import BaseSourceProvider
    from stagegate.deploy.targets import BaseDeploymentTarget
    from stagegate.notifications.channel import NotificationChannel
    from stagegate.state.base_state_store import BaseStateStore
    from stagegate.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)


def build_controller(
    settings: Settings | None = None,
    state: BaseStateStore | None = None,
    artifacts: BaseArtifactStore | None = None,
    channel: NotificationChannel | None = None,
    target: BaseDeploymentTarget | None = None,
    sources: BaseSourceProvider | None = None,
    registry: ActionRegistry | None = None,
) -> PipelineController:
    """Assemble a controller and all of its collaborators.

    Args:
        settings: Global settings. Loaded from .env if None.
        state: Durable state store. Default from STATE_BACKEND.
        artifacts: Artifact store. Default from ARTIFACT_BACKEND.
        channel: Notification channel. Default from NOTIFICATION_BACKEND.
        target: Deployment target. Default: local target under DEPLOY_ROOT.
        sources: Source provider. Default from SOURCE_PROVIDER.
        registry: Action executors. Default: the built-in executors.
    """
    settings = settings or Settings()
    state = state or create_state_store(settings)
    artifacts = artifacts or create_artifact_store(settings)
    channel = channel or create_channel(settings)
    for endpoint in settings.approval_subscribers:
        channel.subscribe(settings.approval_topic, endpoint)

    gate = ApprovalGate(
        store=state,
        channel=channel,
        default_topic=settings.approval_topic,
        default_timeout_s=settings.approval_timeout_s,
    )
    services = ActionServices(
        sources=sources or create_source_provider(settings),
        builder=BuildRunner(
            buildspec_filename=settings.buildspec_filename,
            shell=settings.build_shell,
            timeout_s=settings.build_timeout_s,
        ),
        deployer=DeploymentExecutor(target or create_deployment_target(settings)),
        gate=gate,
        console_url=lambda pipeline, execution_id: console_url(
            settings.console_url_template, pipeline, execution_id
        ),
    )

    controller = PipelineController(
        state=state,
        artifacts=artifacts,
        registry=registry or default_registry(),
        services=services,
        supersede_policy=settings.supersede_policy,
        console_url_template=settings.console_url_template,
    )
    logger.debug(
        "Controller wired: state=%s artifacts=%s notifications=%s policy=%s",
        settings.state_backend, settings.artifact_backend,
        settings.notification_backend, settings.supersede_policy,
    )
    return controller
