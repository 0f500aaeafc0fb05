# src/logging/logger.py - v1
"""Log formatters and root logger setup for the orchestrator.

Both formatters stamp records with the time they were emitted and attach
the execution context (pipeline, execution, stage, action) set by the
controller. Records raised from a PipelineError carry its ``error_type`` so
log queries can match the same names the audit trail and API use.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, TYPE_CHECKING, Any

from stagegate.core.errors import PipelineError
from stagegate.logging.context import LogContext, get_context

if TYPE_CHECKING:
    from stagegate.config.settings import Settings

ROOT_LOGGER = "stagegate"

# Client libraries that log every request at INFO/DEBUG.
NOISY_LIBRARIES = ("botocore", "boto3", "urllib3", "s3transfer", "httpx", "uvicorn.access")


class _ContextFormatter(logging.Formatter):
    @staticmethod
    def _timestamp(record: logging.LogRecord) -> datetime:
        return datetime.fromtimestamp(record.created, tz=timezone.utc)

    @staticmethod
    def _error_type(record: logging.LogRecord) -> str | None:
        if record.exc_info and isinstance(record.exc_info[1], PipelineError):
            return record.exc_info[1].error_type
        return None


class JsonFormatter(_ContextFormatter):
    """One JSON object per line; ``extra={"data": ...}`` lands under ``data``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self._timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            entry["context"] = context

        data = getattr(record, "data", None)
        if data:
            entry["data"] = data

        error_type = self._error_type(record)
        if error_type:
            entry["error_type"] = error_type
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(_ContextFormatter):
    """Single-line console format: ``time [LEVEL] logger webapp<exec> Stage/Action - msg``."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            self._timestamp(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        label = _context_label(get_context())
        if label:
            parts.append(label)
        error_type = self._error_type(record)
        if error_type:
            parts.append(f"!{error_type}")
        parts.append(f"- {record.getMessage()}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _context_label(ctx: LogContext) -> str:
    label = ""
    if ctx.pipeline:
        label = ctx.pipeline
    if ctx.execution_id:
        label += f"<{ctx.execution_id}>"
    if ctx.stage:
        step = f"{ctx.stage}/{ctx.action}" if ctx.action else ctx.stage
        label = f"{label} [{step}]" if label else f"[{step}]"
    return label


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the ``stagegate`` logger and return it.

    Calling it again replaces the previous handlers. Client libraries in
    NOISY_LIBRARIES are held at WARNING unless ``level`` is DEBUG.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text".
        log_file: Rotating log file in addition to the stream (optional).
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
        stream: Console stream, stderr by default so CLI output stays clean.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        from stagegate.logging.handlers import create_rotating_handler

        file_handler = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)
    return root


def configure_from_settings(settings: Settings, verbose: bool = False) -> logging.Logger:
    """Apply the ``STAGEGATE_LOG_*`` settings; ``verbose`` forces DEBUG."""
    return setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
