# src/logging/context.py - v1
"""Contextual logging support: attach operation_id, backend, strategy to log records.

Context variables are copied into every asyncio task, so concurrent
operations never see each other's values.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_operation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation_id", default=None
)
_backend: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "backend", default=None
)
_strategy: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "strategy", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    operation_id: str | None = None
    backend: str | None = None
    strategy: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        operation_id=_operation_id.get(),
        backend=_backend.get(),
        strategy=_strategy.get(),
    )


def set_operation_context(operation_id: str, backend: str | None = None) -> None:
    """Set operation-level context (called once per orchestrated call)."""
    _operation_id.set(operation_id)
    _backend.set(backend)


def set_strategy_context(strategy: str | None) -> None:
    """Set the active fallback strategy (called on fallback dispatch)."""
    _strategy.set(strategy)


def clear_context() -> None:
    """Reset all context variables."""
    _operation_id.set(None)
    _backend.set(None)
    _strategy.set(None)
