# src/storage/json_state_store.py - v1
"""JSON file-based state store (default STATE_BACKEND=json).

Stores each preserved state as an individual JSON file under STATE_ROOT.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from resilientai.storage.base_state_store import BaseStateStore
from resilientai.storage.models import PreservedState

logger = logging.getLogger(__name__)


class JsonStateStore(BaseStateStore):
    """File-based state store using one JSON file per key."""

    def __init__(self, state_root: Path | str) -> None:
        self._root = Path(state_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def save(self, key: str, state: PreservedState) -> None:
        """Store preserved state."""
        path = self._entry_path(key)
        path.write_text(state.model_dump_json(indent=2), encoding="utf-8")

    async def load(self, key: str) -> PreservedState | None:
        """Retrieve preserved state by key."""
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return PreservedState(**data)
        except Exception as e:
            logger.warning("Failed to read preserved state %s: %s", key, e)
            return None

    async def delete(self, key: str) -> None:
        """Remove preserved state."""
        path = self._entry_path(key)
        if path.exists():
            path.unlink()

    async def list_keys(self) -> list[str]:
        """List keys of all stored states."""
        if not self._root.is_dir():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))

    def _entry_path(self, key: str) -> Path:
        """Return file path for a key."""
        safe_key = key.replace("/", "_").replace("\\", "_")
        return self._root / f"{safe_key}.json"
