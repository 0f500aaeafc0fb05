# src/triggers/webhook.py - v1
"""Source Trigger: turn version-control push events into executions.

Accepts either the flat event shape ``{repository, branch, commitRef}`` or
a GitHub-style push payload (``repository.full_name``, ``ref``, ``after``).
Only pipelines whose configured repository and branch match the event are
started.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import TYPE_CHECKING, Any

from stagegate.core.models import TriggerEvent

if TYPE_CHECKING:
    from stagegate.pipeline.controller import PipelineController

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
_NULL_COMMIT = "0" * 40


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header (``sha256=<hex HMAC of body>``)."""
    if not secret or not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.removeprefix("sha256="))


def parse_push_payload(payload: dict[str, Any]) -> TriggerEvent | None:
    """Normalize a webhook payload into a TriggerEvent.

    Returns:
        None for events that cannot start a build: tag pushes and branch
        deletions.

    Raises:
        ValueError: If required fields are missing.
    """
    if "commitRef" in payload or "commit_ref" in payload:
        return TriggerEvent(
            repository=payload["repository"],
            branch=payload["branch"],
            commit_ref=payload.get("commitRef") or payload["commit_ref"],
            pusher=payload.get("pusher"),
        )

    ref = payload.get("ref")
    repository = payload.get("repository") or {}
    if not ref or not isinstance(repository, dict):
        raise ValueError("Push payload needs 'ref' and a 'repository' object")
    if not ref.startswith("refs/heads/"):
        logger.debug("Ignoring non-branch ref %s", ref)
        return None
    commit = payload.get("after") or (payload.get("head_commit") or {}).get("id")
    if payload.get("deleted") or not commit or commit == _NULL_COMMIT:
        logger.debug("Ignoring branch deletion of %s", ref)
        return None

    name = repository.get("full_name") or repository.get("name")
    if not name:
        raise ValueError("Push payload repository has no name")
    pusher = (payload.get("pusher") or {}).get("name")
    return TriggerEvent(repository=name, branch=ref, commit_ref=commit, pusher=pusher)


class SourceTrigger:
    """Starts executions of every registered pipeline watching an event's branch."""

    def __init__(self, controller: PipelineController) -> None:
        self._controller = controller

    async def handle(self, event: TriggerEvent) -> list[str]:
        """Start matching pipelines. Returns the new execution ids."""
        started: list[str] = []
        for pipeline in await self._controller.list_pipelines():
            source = pipeline.definition.source
            if (source.repository, source.branch) != (event.repository, event.branch):
                continue
            started.append(await self._controller.start(pipeline.name, event))

        if not started:
            logger.info(
                "No pipeline watches %s:%s; event ignored", event.repository, event.branch
            )
        return started

    async def dispatch(self, event: TriggerEvent) -> dict[str, str]:
        """Start matching pipelines and run each until it suspends or ends."""
        results: dict[str, str] = {}
        for execution_id in await self.handle(event):
            results[execution_id] = await self._controller.run(execution_id)
        return results
