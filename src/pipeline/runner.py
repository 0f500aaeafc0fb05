# src/pipeline/runner.py - v1
"""Stage runner: execute the actions of one stage and barrier on all of them.

Actions of a stage have no declared dependencies on each other and run
concurrently with ``asyncio.gather``. Each one runs as its own principal,
sees the artifact store only through a ScopedArtifactStore, and has any
exception converted into a failed ActionResult. Actions that already
succeeded in an earlier pass over the same stage (before a suspension or
a restart) are not run again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from stagegate.core.errors import BuildFailed, PipelineError
from stagegate.core.ids import utcnow
from stagegate.core.models import ActionResult, Execution, PipelineDefinition, StageRecord
from stagegate.logging.context import set_stage_context
from stagegate.pipeline.plugin_kit.models import ActionContext, ActionServices
from stagegate.security.permissions import ScopedPrincipal, principal_for
from stagegate.security.scoped_store import ScopedArtifactStore

if TYPE_CHECKING:
    from stagegate.core.models import ActionDeclaration
    from stagegate.pipeline.registry import ActionRegistry
    from stagegate.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)


class StageRunner:
    """Runs one stage of one execution.

    Args:
        registry: Executors by action type.
        artifacts: Raw artifact store; actions only get scoped views of it.
        services: Collaborators passed to every action.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        artifacts: BaseArtifactStore,
        services: ActionServices,
    ) -> None:
        self._registry = registry
        self._artifacts = artifacts
        self._services = services

    async def missing_inputs(
        self, execution: Execution, definition: PipelineDefinition, stage_index: int
    ) -> list[str]:
        """Inputs of not-yet-succeeded actions that are absent from the store."""
        stage = definition.stages[stage_index]
        record = execution.stage_record(stage_index)
        missing: list[str] = []
        for action in stage.actions:
            done = record is not None and record.actions.get(action.name)
            if done and done.status == "succeeded":
                continue
            for name in action.inputs:
                if not await self._artifacts.exists(execution.id, name):
                    missing.append(f"{action.name}<-{name}")
        return missing

    async def run_stage(
        self,
        execution: Execution,
        definition: PipelineDefinition,
        stage_index: int,
        record: StageRecord,
    ) -> StageRecord:
        """Run every pending action of the stage and derive the stage status."""
        stage = definition.stages[stage_index]
        todo = [
            action for action in stage.actions
            if record.actions.get(action.name) is None
            or record.actions[action.name].status != "succeeded"
        ]

        results = await asyncio.gather(
            *(
                self._run_action(execution, definition, stage_index, action,
                                 record.actions.get(action.name))
                for action in todo
            )
        )
        for result in results:
            record.actions[result.name] = result

        statuses = [record.actions[a.name].status for a in stage.actions]
        if "failed" in statuses:
            record.status = "failed"
        elif "pending" in statuses:
            record.status = "suspended"
        else:
            record.status = "succeeded"
        if record.status in ("failed", "succeeded"):
            record.finished_at = utcnow()
        return record

    async def _run_action(
        self,
        execution: Execution,
        definition: PipelineDefinition,
        stage_index: int,
        action: ActionDeclaration,
        previous: ActionResult | None,
    ) -> ActionResult:
        stage = definition.stages[stage_index]
        set_stage_context(stage.name, action.name)

        result = ActionResult(name=action.name, type=action.type)
        if previous is not None:
            result = previous.model_copy(deep=True)
        result.started_at = result.started_at or utcnow()

        principal = ScopedPrincipal(
            principal_for(definition.name, stage.name, action.name), action.grants
        )
        context = ActionContext(
            execution=execution,
            definition=definition,
            stage=stage,
            stage_index=stage_index,
            action=action,
            artifacts=ScopedArtifactStore(self._artifacts, principal, execution.id),
            principal=principal,
            services=self._services,
            previous=previous,
        )

        t0 = time.monotonic()
        try:
            executor = self._registry.get_or_raise(action.type)
            outcome = await executor.execute(context)
        except BuildFailed as exc:
            logger.error("Action %s failed: %s", action.name, exc)
            return _failed(result, exc.error_type, str(exc), exc.diagnostics)
        except PipelineError as exc:
            logger.error("Action %s failed (%s): %s", action.name, exc.error_type, exc)
            return _failed(result, exc.error_type, str(exc))
        except Exception as exc:
            logger.exception("Action %s raised an unexpected error", action.name)
            return _failed(result, "InternalError", f"{type(exc).__name__}: {exc}")

        result.outputs.update(outcome.outputs)
        result.approval_id = outcome.approval_id or result.approval_id
        result.diagnostics = outcome.diagnostics
        if outcome.status == "suspended":
            result.status = "pending"
            logger.info("Action %s suspended (approval %s)", action.name, result.approval_id)
        else:
            result.status = "succeeded"
            result.finished_at = utcnow()
            logger.info(
                "Action %s succeeded in %.2fs (%d outputs)",
                action.name, time.monotonic() - t0, len(outcome.outputs),
            )
        return result


def _failed(
    result: ActionResult, error_type: str, message: str, diagnostics: str | None = None
) -> ActionResult:
    result.status = "failed"
    result.error_type = error_type
    result.error = message
    result.diagnostics = diagnostics
    result.finished_at = utcnow()
    return result
