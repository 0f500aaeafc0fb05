# src/notifications/channel.py - v1
"""Topic-based notification channel.

``publish`` returns as soon as deliveries are scheduled. Each subscriber is
delivered in its own background task with retries (at-least-once); a
delivery that exhausts its retries is logged and recorded, never raised to
the publisher. Subscription management is administrative configuration.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from stagegate.core.retry import RetryConfig, RetryExhausted, with_retry
from stagegate.notifications.models import DeliveryRecord, Notification, Subscriber
from stagegate.notifications.transports import BaseTransport

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Delivers published notifications to every subscriber of a topic.

    Args:
        transport: Delivery backend.
        retry: Retry policy per subscriber delivery.
        history_size: Most recent delivery records kept in ``deliveries``.
    """

    def __init__(
        self,
        transport: BaseTransport,
        retry: RetryConfig | None = None,
        history_size: int = 1000,
    ) -> None:
        self._transport = transport
        self._retry = retry or RetryConfig(max_retries=3, base_delay_s=1.0)
        self._topics: dict[str, list[Subscriber]] = {}
        self._pending: set[asyncio.Task] = set()
        self.deliveries: deque[DeliveryRecord] = deque(maxlen=history_size)

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    # --- Administration ---

    def subscribe(self, topic: str, subscriber: Subscriber | str) -> None:
        """Register a subscriber (a bare string is treated as an email address)."""
        if isinstance(subscriber, str):
            subscriber = Subscriber(protocol="email", endpoint=subscriber)
        subs = self._topics.setdefault(topic, [])
        if subscriber not in subs:
            subs.append(subscriber)
            logger.info("Subscribed %s to topic '%s'", subscriber.endpoint, topic)

    def unsubscribe(self, topic: str, endpoint: str) -> bool:
        subs = self._topics.get(topic, [])
        remaining = [s for s in subs if s.endpoint != endpoint]
        self._topics[topic] = remaining
        return len(remaining) != len(subs)

    def subscribers(self, topic: str) -> list[Subscriber]:
        return list(self._topics.get(topic, []))

    # --- Runtime ---

    async def publish(self, topic: str, notification: Notification) -> Notification:
        """Schedule delivery to all current subscribers of ``topic``."""
        if notification.topic != topic:
            notification = notification.model_copy(update={"topic": topic})

        subscribers = self.subscribers(topic)
        if not subscribers:
            logger.warning(
                "No subscribers on topic '%s'; notification %s dropped",
                topic, notification.id,
            )
            return notification

        for subscriber in subscribers:
            task = asyncio.create_task(self._deliver(subscriber, notification))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug(
            "Published %s to '%s' (%d subscribers)",
            notification.id, topic, len(subscribers),
        )
        return notification

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish (tests, shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver(self, subscriber: Subscriber, notification: Notification) -> None:
        attempts = 0

        async def _attempt() -> None:
            nonlocal attempts
            attempts += 1
            await self._transport.deliver(subscriber, notification)

        try:
            await with_retry(
                _attempt,
                operation=f"deliver {notification.id} to {subscriber.endpoint}",
                config=self._retry,
            )
        except RetryExhausted as exc:
            logger.error(
                "Delivery of %s to %s failed after %d attempts: %s",
                notification.id, subscriber.endpoint, exc.attempts, exc.last_error,
            )
            self.deliveries.append(
                DeliveryRecord(
                    message_id=notification.id,
                    topic=notification.topic,
                    subscriber=subscriber,
                    delivered=False,
                    attempts=attempts,
                    error=str(exc.last_error),
                )
            )
            return

        self.deliveries.append(
            DeliveryRecord(
                message_id=notification.id,
                topic=notification.topic,
                subscriber=subscriber,
                delivered=True,
                attempts=attempts,
            )
        )
