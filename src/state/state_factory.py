# src/state/state_factory.py - v1
"""Factory for state store instantiation."""

from __future__ import annotations

from stagegate.config.settings import Settings
from stagegate.state.base_state_store import BaseStateStore


def create_state_store(settings: Settings) -> BaseStateStore:
    """Instantiate the configured state backend.

    Raises:
        ValueError: If the backend is not supported.
    """
    if settings.state_backend == "json":
        from stagegate.state.json_store import JsonStateStore

        return JsonStateStore(root=settings.state_root)

    if settings.state_backend == "sqlite":
        from stagegate.state.sqlite_store import SqliteStateStore

        return SqliteStateStore(db_path=settings.state_root.expanduser() / "stagegate.db")

    raise ValueError(f"Unsupported state backend: {settings.state_backend!r}")
