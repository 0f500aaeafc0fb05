# src/api/models.py - v1
"""HTTP request/response schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class DecisionRequest(BaseModel):
    """External decision event for an execution's approval request."""

    decision: Literal["approve", "reject"]
    actor: str = Field(min_length=1)
    comment: str | None = None
    request_id: str | None = None


class CancelRequest(BaseModel):
    reason: str = "cancelled by operator"


class ExecutionStatusResponse(BaseModel):
    execution_id: str
    status: str


class TriggerResponse(BaseModel):
    started: list[str] = Field(default_factory=list)
    ignored: bool = False


class HealthResponse(BaseModel):
    status: str
    version: str
