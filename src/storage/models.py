# src/storage/models.py - v1
"""Preserved operation state written on manual fallback."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

STATE_KEY_PREFIX = "operation_state_"


def state_key(operation_id: str) -> str:
    """Namespaced store key for an operation's preserved state."""
    return f"{STATE_KEY_PREFIX}{operation_id}"


class PreservedState(BaseModel):
    """Enough context for a human to resume an abandoned AI operation."""

    operation_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: float
    reason: str | None = None
