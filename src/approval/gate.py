# src/approval/gate.py - v1
"""Approval Gate: durable manual-approval state machine.

    opened -> pending -> approved | rejected | expired
    opened | pending -> superseded   (execution cancelled or superseded)

Each request is persisted in the state store before anything else happens,
so a suspended execution survives a restart with its decision still
pending. A request is decided exactly once; later attempts raise
AlreadyDecided. Expiry is evaluated lazily on every read through the gate
and in bulk by ``expire_overdue``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Literal

from stagegate.core.errors import AlreadyDecided, NotFound, PipelineError
from stagegate.core.ids import utcnow
from stagegate.core.models import ApprovalRequest, Execution
from stagegate.notifications.channel import NotificationChannel
from stagegate.notifications.models import Notification
from stagegate.security.permissions import (
    NOTIFICATION_PUBLISH,
    ScopedPrincipal,
    notification_resource,
)
from stagegate.state.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

Decision = Literal["approved", "rejected"]

_DECISION_ALIASES: dict[str, Decision] = {
    "approve": "approved",
    "approved": "approved",
    "reject": "rejected",
    "rejected": "rejected",
}


def normalize_decision(value: str) -> Decision:
    try:
        return _DECISION_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown approval decision: {value!r}") from None


class ApprovalGate:
    """Creates, decides and expires approval requests.

    Args:
        store: Durable state store holding the requests.
        channel: Notification channel used to reach reviewers.
        default_topic: Topic used when an action does not configure one.
        default_timeout_s: Expiry applied when an action sets no ``timeout_s``.
    """

    def __init__(
        self,
        store: BaseStateStore,
        channel: NotificationChannel,
        default_topic: str = "pipeline-approvals",
        default_timeout_s: int | None = 7 * 24 * 3600,
    ) -> None:
        self._store = store
        self._channel = channel
        self._default_topic = default_topic
        self._default_timeout_s = default_timeout_s
        self._lock = asyncio.Lock()

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    async def open(
        self,
        execution: Execution,
        stage: str,
        action: str,
        configuration: dict | None = None,
        context: str = "",
        review_url: str | None = None,
        principal: ScopedPrincipal | None = None,
    ) -> ApprovalRequest:
        """Open (or re-attach to) the approval request for an action.

        Re-entering the same action returns the request already on record
        instead of notifying reviewers a second time.

        Raises:
            PipelineError: If another approval of this execution is still open.
            PermissionDenied: If ``principal`` may not publish to the topic.
        """
        config = configuration or {}
        topic = config.get("topic") or self._default_topic

        existing = await self._store.find_open_approval(execution.id)
        if existing is not None:
            if existing.stage == stage and existing.action == action:
                logger.info("Re-attached to approval request %s", existing.id)
                return existing
            raise PipelineError(
                f"Execution {execution.id} already has open approval {existing.id} "
                f"({existing.stage}/{existing.action})"
            )

        if principal is not None:
            principal.require(NOTIFICATION_PUBLISH, notification_resource(topic))

        timeout_s = config.get("timeout_s", self._default_timeout_s)
        now = utcnow()
        request = ApprovalRequest(
            execution_id=execution.id,
            pipeline_name=execution.pipeline_name,
            stage=stage,
            action=action,
            topic=topic,
            context=context,
            review_url=review_url,
            created_at=now,
            expires_at=now + timedelta(seconds=int(timeout_s)) if timeout_s else None,
        )
        await self._store.save_approval(request)

        await self._channel.publish(topic, _request_notification(request))

        request.state = "pending"
        await self._store.save_approval(request)
        logger.info(
            "Approval request %s opened on topic '%s' (expires %s)",
            request.id, topic, request.expires_at,
        )
        return request

    async def get(self, request_id: str, now: datetime | None = None) -> ApprovalRequest:
        """Fetch a request with expiry applied.

        Raises:
            NotFound: If the request does not exist.
        """
        request = await self._store.get_approval(request_id)
        if request is None:
            raise NotFound(f"Approval request '{request_id}' not found")
        return await self.evaluate(request, now)

    async def decide(
        self,
        request_id: str,
        decision: str,
        actor: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> ApprovalRequest:
        """Record the single decision of a pending request.

        Raises:
            AlreadyDecided: If the request is no longer pending.
            NotFound: If the request does not exist.
            ValueError: If ``decision`` is not approve/reject.
        """
        outcome = normalize_decision(decision)
        async with self._lock:
            request = await self.get(request_id, now)
            if request.state != "pending":
                raise AlreadyDecided(request.id, request.state)
            request.state = outcome
            request.decided_at = now or utcnow()
            request.decided_by = actor
            request.comment = comment
            await self._store.save_approval(request)

        logger.info("Approval request %s %s by %s", request.id, outcome, actor)
        return request

    async def evaluate(
        self, request: ApprovalRequest, now: datetime | None = None
    ) -> ApprovalRequest:
        """Apply the timeout policy: a pending request past its deadline expires."""
        current = now or utcnow()
        if (
            request.state == "pending"
            and request.expires_at is not None
            and current >= request.expires_at
        ):
            request.state = "expired"
            request.decided_at = current
            await self._store.save_approval(request)
            logger.info("Approval request %s expired", request.id)
        return request

    async def expire_overdue(self, now: datetime | None = None) -> list[ApprovalRequest]:
        """Expire every pending request whose deadline has passed."""
        expired: list[ApprovalRequest] = []
        async with self._lock:
            for request in await self._store.list_approvals(states=("pending",)):
                await self.evaluate(request, now)
                if request.state == "expired":
                    expired.append(request)
        return expired

    async def supersede(
        self, execution_id: str, reason: str = "superseded"
    ) -> ApprovalRequest | None:
        """Release the open request of an execution, if any."""
        async with self._lock:
            request = await self._store.find_open_approval(execution_id)
            if request is None:
                return None
            request.state = "superseded"
            request.decided_at = utcnow()
            request.comment = reason
            await self._store.save_approval(request)
        logger.info("Approval request %s superseded: %s", request.id, reason)
        return request

    async def announce_outcome(
        self, request: ApprovalRequest, outcome: str, detail: str = ""
    ) -> None:
        """Notify the request's topic of how the approval stage ended."""
        body = (
            f"Pipeline: {request.pipeline_name}\n"
            f"Execution: {request.execution_id}\n"
            f"Stage: {request.stage} / {request.action}\n"
            f"Outcome: {outcome}\n"
        )
        if request.decided_by:
            body += f"Decided by: {request.decided_by}\n"
        if detail:
            body += f"\n{detail}\n"
        await self._channel.publish(
            request.topic,
            Notification(
                topic=request.topic,
                subject=f"[{request.pipeline_name}] {request.stage} {outcome}",
                body=body,
                attributes={
                    "request_id": request.id,
                    "execution_id": request.execution_id,
                    "outcome": outcome,
                },
            ),
        )


def _request_notification(request: ApprovalRequest) -> Notification:
    lines = [
        f"Pipeline {request.pipeline_name} is waiting for approval.",
        "",
        f"Execution: {request.execution_id}",
        f"Stage: {request.stage} / {request.action}",
        f"Request: {request.id}",
    ]
    if request.expires_at is not None:
        lines.append(f"Expires: {request.expires_at.isoformat()}")
    if request.review_url:
        lines.append(f"Review: {request.review_url}")
    if request.context:
        lines += ["", request.context]
    return Notification(
        topic=request.topic,
        subject=f"[{request.pipeline_name}] Approval needed: {request.stage}",
        body="\n".join(lines),
        attributes={
            "request_id": request.id,
            "execution_id": request.execution_id,
            "review_url": request.review_url,
        },
    )
