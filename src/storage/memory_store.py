# src/storage/memory_store.py - v1
"""In-memory state store (STATE_BACKEND=memory), mainly for tests and embedding."""

from __future__ import annotations

from resilientai.storage.base_state_store import BaseStateStore
from resilientai.storage.models import PreservedState


class MemoryStateStore(BaseStateStore):
    """Dict-backed store; contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def save(self, key: str, state: PreservedState) -> None:
        self._data[key] = state.model_dump_json()

    async def load(self, key: str) -> PreservedState | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return PreservedState.model_validate_json(raw)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return sorted(self._data)
