# src/storage/base_state_store.py - v1
"""Abstract key-value store for preserved operation state."""

from __future__ import annotations

from abc import ABC, abstractmethod

from resilientai.storage.models import PreservedState


class BaseStateStore(ABC):
    """Unified interface for preserved-state backends."""

    @abstractmethod
    async def save(self, key: str, state: PreservedState) -> None:
        """Store state under key (overwrites)."""

    @abstractmethod
    async def load(self, key: str) -> PreservedState | None:
        """Retrieve state by key, None if absent or unreadable."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove state by key."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List all stored keys."""

    def close(self) -> None:
        """Release backend resources. Nothing to release by default."""
