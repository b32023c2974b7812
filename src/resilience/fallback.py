# src/resilience/fallback.py - v1
"""Fallback strategies used once the primary path is unavailable.

Strategies:
  cached_result      serve an exact or contextual cache hit
  alternative_ai     try secondary backends in order
  degraded_function  reduced-capability local result, no external call
  immediate_manual   hand over to the caller's manual function
  retry_then_manual  same handler as immediate_manual; the retrying
                     happens before dispatch

Each strategy raises FallbackFailed with a reason code when it cannot
produce a result.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Sequence

from resilientai.cache.contextual_cache import ContextualCache
from resilientai.events.bus import EventBus, LifecycleEvent
from resilientai.health.tracker import ServiceHealthTracker
from resilientai.logging.context import set_strategy_context
from resilientai.resilience.errors import FallbackFailed
from resilientai.resilience.models import (
    DegradedResult,
    FallbackStrategy,
    ManualFallbackRequest,
    Operation,
    OperationState,
)
from resilientai.resilience.retry import classify_error
from resilientai.storage.base_state_store import BaseStateStore
from resilientai.storage.models import PreservedState, state_key
from resilientai.tracking.fallback_history import FallbackHistory

logger = logging.getLogger(__name__)

ManualFallbackFn = Callable[[ManualFallbackRequest], Any]
DegradedFn = Callable[[dict[str, Any]], Any]

FRIENDLY_MESSAGES: dict[str, str] = {
    "timeout": "Our AI seems distracted today! You can continue manually.",
    "service_unhealthy": "AI services are temporarily unavailable. You can continue manually.",
    "network_error": "Connection issues detected. You can continue manually.",
    "rate_limit": "Too many requests. Please continue manually.",
    "invalid_response": "AI response was unclear. You can continue manually.",
    "server_error": "The AI service is having trouble right now. You can continue manually.",
    "no_cache_available": "No earlier answer is available for this request. Please continue manually.",
    "cache_disabled": "No earlier answer is available for this request. Please continue manually.",
    "alternative_ai_unavailable": "No backup AI service is available right now. Please continue manually.",
    "no_manual_fallback": "AI assistance is unavailable and this step cannot be completed manually here.",
    "manual_fallback_error": "The manual fallback could not be completed. Please try again.",
}
DEFAULT_FRIENDLY_MESSAGE = "AI assistance is temporarily unavailable. You can continue manually."


def friendly_message(reason: str | None) -> str:
    """Human-readable message for a reason code."""
    if reason is None:
        return DEFAULT_FRIENDLY_MESSAGE
    return FRIENDLY_MESSAGES.get(reason, DEFAULT_FRIENDLY_MESSAGE)


class BaseAlternativeBackend(ABC):
    """A secondary AI backend tried by the ``alternative_ai`` strategy."""

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Identifier used for health tracking."""

    @abstractmethod
    async def run(self, operation: Operation) -> Any:
        """Produce a result for the operation or raise."""


class FallbackDispatcher:
    """Selects and runs one fallback strategy per dispatch."""

    def __init__(
        self,
        history: FallbackHistory,
        events: EventBus | None = None,
        cache: ContextualCache | None = None,
        health: ServiceHealthTracker | None = None,
        state_store: BaseStateStore | None = None,
        alternative_backends: Sequence[BaseAlternativeBackend] = (),
        degraded_fn: DegradedFn | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._history = history
        self._events = events
        self._cache = cache
        self._health = health
        self._state_store = state_store
        self._alternatives = list(alternative_backends)
        self._degraded_fn = degraded_fn
        self._clock = clock

        self._handlers: dict[
            FallbackStrategy,
            Callable[[Operation, ManualFallbackFn | None], Awaitable[Any]],
        ] = {
            FallbackStrategy.CACHED_RESULT: self._serve_cached,
            FallbackStrategy.ALTERNATIVE_AI: self._try_alternatives,
            FallbackStrategy.DEGRADED_FUNCTION: self._degrade,
            FallbackStrategy.IMMEDIATE_MANUAL: self._manual,
            FallbackStrategy.RETRY_THEN_MANUAL: self._manual,
        }
        missing = set(FallbackStrategy) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for strategies: {sorted(s.value for s in missing)}")

    async def dispatch(
        self,
        operation: Operation,
        reason: str,
        manual_fallback: ManualFallbackFn | None = None,
        error: BaseException | None = None,
    ) -> Any:
        """Run the operation's fallback strategy.

        Raises:
            FallbackFailed: If the strategy could not produce a result.
        """
        strategy = operation.strategy
        set_strategy_context(strategy.value)
        operation.fallback_reason = reason

        record = self._history.record(
            operation_id=operation.id,
            reason=reason,
            strategy=strategy.value,
            attempts=operation.attempts,
            error=str(error) if error is not None else reason,
        )
        logger.warning(
            "Fallback triggered for '%s': %s -> %s", operation.id, reason, strategy.value,
        )
        self._emit(LifecycleEvent.FALLBACK_TRIGGERED, **record.model_dump())

        try:
            result = await self._handlers[strategy](operation, manual_fallback)
        except FallbackFailed as e:
            logger.warning("Fallback %s failed for '%s': %s", strategy.value, operation.id, e)
            self._emit(
                LifecycleEvent.FALLBACK_FAILED,
                operation_id=operation.id,
                strategy=strategy.value,
                reason=e.reason,
            )
            raise
        finally:
            set_strategy_context(None)

        self._emit(
            LifecycleEvent.FALLBACK_SUCCEEDED,
            operation_id=operation.id,
            strategy=strategy.value,
        )
        return result

    # --- Strategies ---

    async def _serve_cached(self, operation: Operation, _manual: ManualFallbackFn | None) -> Any:
        if self._cache is None:
            raise FallbackFailed("cache_disabled")
        payload = operation.payload
        # The orchestrator already counted this request on its own lookup.
        hit = self._cache.get(payload.prompt, payload.ancestry, payload.focus, record_stats=False)
        if hit is None:
            raise FallbackFailed("no_cache_available")
        logger.info("Serving %s cache hit for '%s'", hit.cache_hit, operation.id)
        return hit.response

    async def _try_alternatives(self, operation: Operation, _manual: ManualFallbackFn | None) -> Any:
        if not self._alternatives:
            raise FallbackFailed("alternative_ai_unavailable", "no alternative backend configured")

        last_reason = "alternative_ai_unavailable"
        for backend in self._alternatives:
            backend_id = backend.backend_id
            if self._health is not None and not self._health.is_healthy(backend_id):
                logger.debug("Skipping unhealthy alternative '%s'", backend_id)
                continue
            try:
                result = await asyncio.wait_for(backend.run(operation), operation.timeout_s)
            except Exception as e:
                last_reason = classify_error(e)
                if self._health is not None:
                    self._health.mark_failure(backend_id, last_reason)
                logger.warning("Alternative backend '%s' failed: %s", backend_id, e)
                continue
            if self._health is not None:
                self._health.mark_success(backend_id)
            return result

        raise FallbackFailed("alternative_ai_unavailable", f"all alternatives failed ({last_reason})")

    async def _degrade(self, operation: Operation, _manual: ManualFallbackFn | None) -> DegradedResult:
        data = None
        if self._degraded_fn is not None:
            try:
                data = self._degraded_fn(dict(operation.context))
            except Exception as e:
                logger.warning("Degraded function failed for '%s': %s", operation.id, e)
        return DegradedResult(context=dict(operation.context), data=data)

    async def _manual(self, operation: Operation, manual_fallback: ManualFallbackFn | None) -> Any:
        if manual_fallback is None:
            raise FallbackFailed("no_manual_fallback")

        operation.transition(OperationState.MANUAL_OVERRIDE, at=self._clock())
        self._emit(
            LifecycleEvent.MANUAL_OVERRIDE_ACTIVATED,
            operation_id=operation.id,
            context=dict(operation.context),
        )

        if operation.preserve_state:
            await self._preserve(operation)

        request = ManualFallbackRequest(
            reason=friendly_message(operation.fallback_reason),
            reason_code=operation.fallback_reason or "unknown",
            operation_id=operation.id,
            context=dict(operation.context),
            preserved_state=operation.preserved_state,
        )
        try:
            outcome = manual_fallback(request)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            raise FallbackFailed("manual_fallback_error", str(e)) from e
        return outcome

    async def _preserve(self, operation: Operation) -> None:
        state = PreservedState(
            operation_id=operation.id,
            context=dict(operation.context),
            timestamp=self._clock(),
            reason=operation.fallback_reason,
        )
        if self._state_store is None:
            operation.preserved_state = state.model_dump()
            return
        try:
            await self._state_store.save(state_key(operation.id), state)
        except Exception as e:
            logger.warning("Could not preserve state for '%s': %s", operation.id, e)
            return
        operation.preserved_state = state.model_dump()

    def _emit(self, event: LifecycleEvent, **data: Any) -> None:
        if self._events is not None:
            self._events.publish(event, **data)
