# src/storage/state_store_factory.py - v1
"""Factory for preserved-state store instantiation."""

from __future__ import annotations

from resilientai.config.settings import Settings
from resilientai.storage.base_state_store import BaseStateStore


def create_state_store(settings: Settings | None = None) -> BaseStateStore:
    """Instantiate the configured state backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseStateStore implementation.
    """
    backend = "memory" if settings is None else settings.state_backend

    if backend == "memory":
        from resilientai.storage.memory_store import MemoryStateStore
        return MemoryStateStore()

    if backend == "json":
        from resilientai.storage.json_state_store import JsonStateStore
        return JsonStateStore(state_root=settings.state_root)

    if backend == "sqlite":
        from resilientai.storage.sqlite_state_store import SqliteStateStore
        db_path = settings.state_root.expanduser() / "resilientai_state.db"
        return SqliteStateStore(db_path=db_path)

    raise ValueError(f"Unsupported state backend: {backend!r}")
