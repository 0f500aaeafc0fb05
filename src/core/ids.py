# src/core/ids.py - v1
"""Identifier generation for executions and approval requests."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_execution_id(timestamp: datetime | None = None) -> str:
    """Generate an execution_id: yyyymmdd_hhmmss_{uuid4_short}.

    Sorting execution ids lexically orders them by creation time.
    """
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:8]
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_uuid}"


def generate_request_id() -> str:
    """Generate an approval request id."""
    return f"apr_{uuid.uuid4().hex[:12]}"


def generate_message_id() -> str:
    """Generate a notification message id (stable across delivery retries)."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
