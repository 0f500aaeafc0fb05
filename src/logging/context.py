# src/logging/context.py - v1
"""Contextual logging support: attach pipeline, execution, stage and action to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per execution step.
_pipeline: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "pipeline", default=None
)
_execution_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "execution_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)
_action: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "action", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    pipeline: str | None = None
    execution_id: str | None = None
    stage: str | None = None
    action: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        pipeline=_pipeline.get(),
        execution_id=_execution_id.get(),
        stage=_stage.get(),
        action=_action.get(),
    )


def set_execution_context(pipeline: str, execution_id: str) -> None:
    """Set execution-level context (called by the controller per advance)."""
    _pipeline.set(pipeline)
    _execution_id.set(execution_id)
    _stage.set(None)
    _action.set(None)


def set_stage_context(stage: str, action: str | None = None) -> None:
    """Set stage/action-level context.

    Actions of one stage run as separate asyncio tasks, each with its own
    copy of the context, so setting the action here does not leak between them.
    """
    _stage.set(stage)
    _action.set(action)


def clear_context() -> None:
    """Reset all context variables."""
    _pipeline.set(None)
    _execution_id.set(None)
    _stage.set(None)
    _action.set(None)
