# src/notifications/transports.py - v1
"""Delivery transports for the notification channel.

A transport pushes one notification to one subscriber and raises on failure;
retries are the channel's job.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod

from stagegate.notifications.models import Notification, Subscriber

logger = logging.getLogger(__name__)


class BaseTransport(ABC):
    """Interface for notification delivery backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier (e.g., 'log', 'sns')."""

    @abstractmethod
    async def deliver(self, subscriber: Subscriber, notification: Notification) -> None:
        """Deliver a notification to one subscriber."""


class LogTransport(BaseTransport):
    """Writes notifications to the log (NOTIFICATION_BACKEND=log)."""

    @property
    def name(self) -> str:
        return "log"

    async def deliver(self, subscriber: Subscriber, notification: Notification) -> None:
        logger.info(
            "Notification %s to %s:%s - %s",
            notification.id,
            subscriber.protocol,
            subscriber.endpoint,
            notification.subject,
            extra={"data": {"topic": notification.topic, "body": notification.body}},
        )


class MemoryTransport(BaseTransport):
    """Keeps delivered notifications in an outbox (NOTIFICATION_BACKEND=memory)."""

    def __init__(self) -> None:
        self.outbox: list[tuple[Subscriber, Notification]] = []

    @property
    def name(self) -> str:
        return "memory"

    async def deliver(self, subscriber: Subscriber, notification: Notification) -> None:
        self.outbox.append((subscriber, notification))

    def delivered_to(self, endpoint: str) -> list[Notification]:
        return [n for s, n in self.outbox if s.endpoint == endpoint]


class SnsTransport(BaseTransport):
    """Publishes to an SNS topic (NOTIFICATION_BACKEND=sns).

    SNS fans out to its own email subscriptions, so one publish per
    notification is enough; the subscriber list only labels the message.
    Requires 'boto3' package: pip install boto3.
    """

    def __init__(
        self,
        topic_arn: str,
        region: str | None = None,
        client: object | None = None,
    ) -> None:
        if client is None:
            try:
                import boto3
            except ImportError as e:
                raise ImportError(
                    "boto3 package required for SNS notifications: pip install boto3"
                ) from e
            kwargs: dict = {}
            if region:
                kwargs["region_name"] = region
            client = boto3.client("sns", **kwargs)
        self._sns = client
        self._topic_arn = topic_arn
        self._published: set[str] = set()

    @property
    def name(self) -> str:
        return "sns"

    async def deliver(self, subscriber: Subscriber, notification: Notification) -> None:
        if notification.id in self._published:
            return
        self._sns.publish(
            TopicArn=self._topic_arn,
            Subject=notification.subject[:100],
            Message=notification.body,
            MessageAttributes={
                "message_id": {"DataType": "String", "StringValue": notification.id},
                "topic": {"DataType": "String", "StringValue": notification.topic},
                "attributes": {
                    "DataType": "String",
                    "StringValue": json.dumps(notification.attributes, default=str),
                },
            },
        )
        self._published.add(notification.id)
