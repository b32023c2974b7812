# src/resilience/orchestrator.py - v1
"""Façade that runs one AI operation through cache, retries and fallback.

Flow:
  1. Contextual cache lookup (hit -> done).
  2. Health gate: an unhealthy backend skips retries entirely.
  3. RetryExecutor against the primary function.
  4. On exhaustion, FallbackDispatcher with the operation's strategy.
  5. If the fallback fails too, the operation ends ``failed`` and the
     caller gets a FallbackExhausted naming both failures.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable

from resilientai.cache.contextual_cache import ContextualCache
from resilientai.config.settings import Settings
from resilientai.events.bus import EventBus, LifecycleEvent
from resilientai.health.tracker import ServiceHealthTracker
from resilientai.logging.context import set_operation_context
from resilientai.resilience.errors import (
    FallbackExhausted,
    FallbackFailed,
    RetryExhausted,
    ServiceUnhealthy,
)
from resilientai.resilience.fallback import (
    FallbackDispatcher,
    ManualFallbackFn,
    friendly_message,
)
from resilientai.resilience.models import (
    FallbackStrategy,
    Operation,
    OperationOptions,
    OperationPayload,
    OperationResult,
    OperationState,
)
from resilientai.resilience.retry import PrimaryFn, RetryExecutor
from resilientai.tracking.fallback_history import FallbackHistory
from resilientai.tracking.models import ResilienceStats

logger = logging.getLogger(__name__)


class OperationOrchestrator:
    """Entry point for resilient AI calls; owns operations while in flight."""

    def __init__(
        self,
        settings: Settings,
        health: ServiceHealthTracker,
        executor: RetryExecutor,
        dispatcher: FallbackDispatcher,
        history: FallbackHistory,
        events: EventBus | None = None,
        cache: ContextualCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._health = health
        self._executor = executor
        self._dispatcher = dispatcher
        self._history = history
        self._events = events
        self._cache = cache if settings.cache_enabled else None
        self._clock = clock
        self._active: dict[str, Operation] = {}
        self._lock = threading.Lock()

    @property
    def active_operations(self) -> dict[str, Operation]:
        with self._lock:
            return dict(self._active)

    def create_operation(
        self,
        payload: OperationPayload | None = None,
        operation_id: str | None = None,
        options: OperationOptions | None = None,
    ) -> Operation:
        """Resolve per-operation options against settings defaults."""
        options = options or OperationOptions()
        s = self._settings
        return Operation(
            id=operation_id or uuid.uuid4().hex,
            payload=payload or OperationPayload(),
            timeout_s=options.timeout_s or s.default_timeout_s,
            max_retries=options.max_retries or s.max_retries,
            strategy=options.strategy or FallbackStrategy(s.default_strategy),
            preserve_state=(
                s.preserve_state if options.preserve_state is None else options.preserve_state
            ),
            backend=options.backend or s.primary_backend,
            context=dict(options.context),
            started_at=self._clock(),
        )

    async def execute(
        self,
        primary_fn: PrimaryFn,
        *,
        payload: OperationPayload | None = None,
        operation_id: str | None = None,
        options: OperationOptions | None = None,
        manual_fallback: ManualFallbackFn | None = None,
    ) -> OperationResult:
        """Run an AI operation with caching, retries and fallback protection.

        Args:
            primary_fn: Async callable receiving the operation context.
            payload: Prompt and conversational ancestry (enables caching).
            operation_id: Caller-supplied id; generated when omitted.
            options: Per-operation overrides of the settings defaults.
            manual_fallback: Called by the manual strategies.

        Returns:
            OperationResult for the primary, cached or fallback outcome.

        Raises:
            FallbackExhausted: If the primary path and the fallback both failed.
            ValueError: If an operation with the same id is already in flight.
        """
        operation = self.create_operation(payload, operation_id, options)
        with self._lock:
            if operation.id in self._active:
                raise ValueError(f"Operation '{operation.id}' is already in flight")
            self._active[operation.id] = operation

        set_operation_context(operation.id, operation.backend)
        try:
            self._emit(
                LifecycleEvent.OPERATION_STARTED,
                operation_id=operation.id,
                context=dict(operation.context),
            )
            return await self._run(operation, primary_fn, manual_fallback)
        finally:
            with self._lock:
                self._active.pop(operation.id, None)

    async def _run(
        self,
        operation: Operation,
        primary_fn: PrimaryFn,
        manual_fallback: ManualFallbackFn | None,
    ) -> OperationResult:
        cached = self._cached_result(operation)
        if cached is not None:
            return cached

        operation.transition(OperationState.IN_PROGRESS)

        if not self._health.is_healthy(operation.backend):
            error = ServiceUnhealthy(operation.backend)
            logger.info("Skipping retries for '%s': %s", operation.id, error)
            return await self._fallback(operation, error.reason, error, manual_fallback)

        try:
            outcome = await self._executor.run(operation, primary_fn)
        except RetryExhausted as e:
            return await self._fallback(operation, e.reason, e.last_error, manual_fallback)

        operation.transition(OperationState.SUCCESS, at=self._clock())
        self._store(operation, outcome.result)
        self._emit(
            LifecycleEvent.OPERATION_COMPLETED,
            operation_id=operation.id,
            success=True,
            duration_s=operation.duration_s,
            attempts=outcome.attempts,
            fallback_used=False,
        )
        logger.info(
            "Operation '%s' succeeded in %d attempt(s)", operation.id, outcome.attempts,
        )
        return OperationResult(
            result=outcome.result,
            operation_id=operation.id,
            duration_s=operation.duration_s,
            fallback_used=False,
            attempts=outcome.attempts,
        )

    async def _fallback(
        self,
        operation: Operation,
        reason: str,
        error: BaseException | None,
        manual_fallback: ManualFallbackFn | None,
    ) -> OperationResult:
        operation.transition(OperationState.FALLBACK_ACTIVE)
        try:
            result = await self._dispatcher.dispatch(operation, reason, manual_fallback, error)
        except FallbackFailed as e:
            operation.transition(OperationState.FAILED, at=self._clock())
            self._emit(
                LifecycleEvent.OPERATION_COMPLETED,
                operation_id=operation.id,
                success=False,
                error=str(e),
                fallback_used=True,
            )
            logger.error(
                "Operation '%s' failed: primary %s, fallback %s", operation.id, reason, e.reason,
            )
            raise FallbackExhausted(
                operation_id=operation.id,
                original_reason=reason,
                reason=e.reason,
                message=friendly_message(e.reason),
            ) from e

        operation.transition(OperationState.SUCCESS, at=self._clock())
        if operation.strategy is FallbackStrategy.ALTERNATIVE_AI:
            self._store(operation, result)
        self._emit(
            LifecycleEvent.OPERATION_COMPLETED,
            operation_id=operation.id,
            success=True,
            duration_s=operation.duration_s,
            fallback_used=True,
            fallback_strategy=operation.strategy.value,
        )
        return OperationResult(
            result=result,
            operation_id=operation.id,
            duration_s=operation.duration_s,
            fallback_used=True,
            attempts=operation.attempts,
            fallback_reason=reason,
            fallback_strategy=operation.strategy,
        )

    # --- Cache ---

    def _cached_result(self, operation: Operation) -> OperationResult | None:
        payload = operation.payload
        if self._cache is None or not payload.prompt:
            return None
        hit = self._cache.get(payload.prompt, payload.ancestry, payload.focus)
        if hit is None:
            return None

        operation.transition(OperationState.IN_PROGRESS)
        operation.transition(OperationState.SUCCESS, at=self._clock())
        self._emit(
            LifecycleEvent.OPERATION_COMPLETED,
            operation_id=operation.id,
            success=True,
            duration_s=operation.duration_s,
            attempts=0,
            fallback_used=False,
            cache_hit=hit.cache_hit,
        )
        logger.debug("Operation '%s' served from %s cache hit", operation.id, hit.cache_hit)
        return OperationResult(
            result=hit.response,
            operation_id=operation.id,
            duration_s=operation.duration_s,
            attempts=0,
            cache_hit=hit.cache_hit,
            confidence=hit.confidence,
        )

    def _store(self, operation: Operation, result: Any) -> None:
        payload = operation.payload
        if self._cache is None or not payload.prompt:
            return
        self._cache.put(
            payload.prompt,
            payload.ancestry,
            payload.focus,
            result,
            metadata={"operation_id": operation.id, "backend": operation.backend},
        )

    # --- Stats ---

    def get_stats(self) -> ResilienceStats:
        """Read-only snapshot of fallbacks, health and cache usage."""
        cache_stats = self._cache.stats() if self._cache is not None else None
        return ResilienceStats(
            total_fallbacks=self._history.total,
            recent_fallbacks=len(self._history.recent()),
            active_operation_count=len(self.active_operations),
            per_backend_health=self._health.snapshot(),
            cache_size=cache_stats.size if cache_stats is not None else 0,
            fallback_reason_histogram=self._history.reason_histogram(),
            cache=cache_stats,
        )

    def _emit(self, event: LifecycleEvent, **data: Any) -> None:
        if self._events is not None:
            self._events.publish(event, **data)
