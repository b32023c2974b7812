# src/resilience/models.py - v1
"""Operation domain models: Operation, OperationOptions, OperationResult, etc."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from resilientai.cache.models import ConversationNode
from resilientai.resilience.errors import InvalidTransition


class FallbackStrategy(str, Enum):
    IMMEDIATE_MANUAL = "immediate_manual"
    RETRY_THEN_MANUAL = "retry_then_manual"
    CACHED_RESULT = "cached_result"
    ALTERNATIVE_AI = "alternative_ai"
    DEGRADED_FUNCTION = "degraded_function"


class OperationState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    FALLBACK_ACTIVE = "fallback_active"
    MANUAL_OVERRIDE = "manual_override"


TERMINAL_STATES = frozenset({OperationState.SUCCESS, OperationState.FAILED})

_TRANSITIONS: dict[OperationState, frozenset[OperationState]] = {
    OperationState.PENDING: frozenset({OperationState.IN_PROGRESS}),
    OperationState.IN_PROGRESS: frozenset(
        {OperationState.IN_PROGRESS, OperationState.SUCCESS, OperationState.FALLBACK_ACTIVE}
    ),
    OperationState.FALLBACK_ACTIVE: frozenset(
        {OperationState.SUCCESS, OperationState.MANUAL_OVERRIDE, OperationState.FAILED}
    ),
    OperationState.MANUAL_OVERRIDE: frozenset({OperationState.SUCCESS, OperationState.FAILED}),
    OperationState.SUCCESS: frozenset(),
    OperationState.FAILED: frozenset(),
}


def _check_context_value(value: Any, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValueError(f"context key at {path} must be a string, got {type(k).__name__}")
            _check_context_value(v, f"{path}.{k}")
        return
    raise ValueError(
        f"context value at {path} must be str, number, bool, None or a nested map, "
        f"got {type(value).__name__}"
    )


class OperationPayload(BaseModel):
    """Prompt plus the conversation it belongs to."""

    prompt: str = ""
    ancestry: list[ConversationNode] = Field(default_factory=list)
    focus: str = "creative"


class OperationOptions(BaseModel):
    """Per-operation tuning. None means "use the Settings default"."""

    timeout_s: float | None = Field(default=None, gt=0)
    max_retries: int | None = Field(default=None, ge=1)
    strategy: FallbackStrategy | None = None
    preserve_state: bool | None = None
    backend: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("context")
    @classmethod
    def validate_context(cls, v: dict[str, Any]) -> dict[str, Any]:  # noqa: N805
        _check_context_value(v, "context")
        return v


class Operation(BaseModel):
    """One submitted unit of work and its lifecycle."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    payload: OperationPayload = Field(default_factory=OperationPayload)
    timeout_s: float
    max_retries: int
    strategy: FallbackStrategy
    preserve_state: bool
    backend: str
    context: dict[str, Any] = Field(default_factory=dict)

    state: OperationState = OperationState.PENDING
    history: list[OperationState] = Field(default_factory=lambda: [OperationState.PENDING])
    attempts: int = 0
    started_at: float = Field(default_factory=time.time)
    ended_at: float | None = None
    fallback_reason: str | None = None
    preserved_state: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: OperationState, at: float | None = None) -> None:
        """Move to ``target``; raises InvalidTransition if not allowed."""
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.id, self.state.value, target.value)
        self.state = target
        if self.history[-1] != target:
            self.history.append(target)
        if target in TERMINAL_STATES:
            self.ended_at = at if at is not None else time.time()

    @property
    def duration_s(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.time()
        return max(0.0, end - self.started_at)


class OperationResult(BaseModel):
    """What the caller gets back from a successful execute()."""

    success: bool = True
    result: Any = None
    operation_id: str
    duration_s: float = 0.0
    fallback_used: bool = False
    attempts: int = 0
    cache_hit: Literal["exact", "contextual"] | None = None
    confidence: float | None = None
    fallback_reason: str | None = None
    fallback_strategy: FallbackStrategy | None = None
    state: OperationState = OperationState.SUCCESS


class ManualFallbackRequest(BaseModel):
    """Argument handed to the caller's manual fallback function."""

    reason: str
    reason_code: str
    operation_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    preserved_state: dict[str, Any] | None = None


class DegradedResult(BaseModel):
    """Clearly marked reduced-capability result produced without any AI call."""

    degraded: Literal[True] = True
    message: str = "Basic functionality available. AI features temporarily unavailable."
    context: dict[str, Any] = Field(default_factory=dict)
    data: Any = None
