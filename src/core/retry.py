# src/core/retry.py - v1
"""Retry with exponential backoff for best-effort side channels.

Only notification delivery uses this. Actions are never retried: a failed
action is terminal for its execution, and a re-run is an explicit re-trigger.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All retries exhausted for an operation."""

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts: {last_error}"
        )


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "unknown",
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async function, retrying on any exception.

    Raises:
        RetryExhausted: If all retries are exhausted.
    """
    cfg = config or RetryConfig()
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            attempts += 1
            if attempts > cfg.max_retries:
                raise RetryExhausted(operation, attempts, e) from e

            delay = compute_delay(cfg, attempts - 1)
            logger.warning(
                "'%s' failed (attempt %d/%d): %s, retrying in %.1fs",
                operation, attempts, cfg.max_retries, e, delay,
            )
            await asyncio.sleep(delay)
