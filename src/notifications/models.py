# src/notifications/models.py - v1
"""Notification domain models: Notification, Subscriber, DeliveryRecord."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from stagegate.core.ids import generate_message_id, utcnow


class Subscriber(BaseModel):
    """An endpoint registered against a topic (email address, URL, queue)."""

    model_config = {"frozen": True}

    protocol: Literal["email", "webhook", "log"] = "email"
    endpoint: str


class Notification(BaseModel):
    """A message published to a topic.

    ``id`` stays the same across delivery retries so receivers can drop
    duplicates of an at-least-once delivery.
    """

    id: str = Field(default_factory=generate_message_id)
    topic: str
    subject: str
    body: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class DeliveryRecord(BaseModel):
    message_id: str
    topic: str
    subscriber: Subscriber
    delivered: bool
    attempts: int
    error: str | None = None
    delivered_at: datetime = Field(default_factory=utcnow)
