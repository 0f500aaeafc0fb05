# src/notifications/channel_factory.py - v1
"""Factory: build the notification channel from configuration."""

from __future__ import annotations

from stagegate.config.settings import Settings
from stagegate.core.retry import RetryConfig
from stagegate.notifications.channel import NotificationChannel
from stagegate.notifications.transports import BaseTransport, LogTransport, MemoryTransport


def create_transport(settings: Settings) -> BaseTransport:
    """Create the transport selected by NOTIFICATION_BACKEND.

    Raises:
        ValueError: If the backend is not supported.
    """
    backend = settings.notification_backend
    if backend == "log":
        return LogTransport()
    if backend == "memory":
        return MemoryTransport()
    if backend == "sns":
        from stagegate.notifications.transports import SnsTransport

        return SnsTransport(
            topic_arn=settings.notification_sns_topic_arn,
            region=settings.notification_sns_region or None,
        )
    raise ValueError(f"Unsupported notification backend: {backend!r}")


def create_channel(settings: Settings) -> NotificationChannel:
    return NotificationChannel(
        transport=create_transport(settings),
        retry=RetryConfig(
            max_retries=settings.notification_max_retries,
            base_delay_s=settings.notification_retry_delay_s,
        ),
    )
