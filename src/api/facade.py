# src/api/facade.py - v1
"""Public API facade: the composition root for the resilience layer.

Usage:
    from resilientai.api.facade import ResilienceRuntime

    async with ResilienceRuntime() as runtime:
        result = await runtime.execute(call_model, payload=payload)

Every shared service (cache, health tracker, event bus, history, state
store) is built once here and injected; nothing is a module global.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence

from resilientai.cache.contextual_cache import ContextualCache
from resilientai.config.settings import Settings
from resilientai.events.bus import EventBus
from resilientai.health.tracker import ServiceHealthTracker
from resilientai.resilience.fallback import FallbackDispatcher
from resilientai.resilience.orchestrator import OperationOrchestrator
from resilientai.resilience.retry import RetryExecutor
from resilientai.storage.state_store_factory import create_state_store
from resilientai.tracking.fallback_history import FallbackHistory

if TYPE_CHECKING:
    from resilientai.resilience.fallback import (
        BaseAlternativeBackend,
        DegradedFn,
        ManualFallbackFn,
    )
    from resilientai.resilience.models import (
        OperationOptions,
        OperationPayload,
        OperationResult,
    )
    from resilientai.resilience.retry import PrimaryFn
    from resilientai.storage.base_state_store import BaseStateStore
    from resilientai.tracking.models import ResilienceStats

logger = logging.getLogger(__name__)


class ResilienceRuntime:
    """Owns one instance of every shared service and wires them together."""

    def __init__(
        self,
        settings: Settings | None = None,
        state_store: BaseStateStore | None = None,
        alternative_backends: Sequence[BaseAlternativeBackend] = (),
        degraded_fn: DegradedFn | None = None,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        """Build the service graph.

        Args:
            settings: Global settings. Loaded from .env if None.
            state_store: Preserved-state backend. Built from settings if None.
            alternative_backends: Secondary backends for ``alternative_ai``.
            degraded_fn: Local reduced-capability computation.
            events: Notification bus. A fresh one is created if None.
            clock: Time source shared by cache, health and history.
            sleep: Backoff sleep override (tests).
        """
        self.settings = settings or Settings()
        self.events = events or EventBus(clock=clock)
        self.cache = ContextualCache(
            max_size=self.settings.cache_max_size,
            ttl_s=self.settings.cache_ttl_s,
            similarity_threshold=self.settings.cache_similarity_threshold,
            prompt_max_length=self.settings.prompt_max_length,
            clock=clock,
        )
        self.health = ServiceHealthTracker(
            events=self.events,
            recovery_window_s=self.settings.health_recovery_window_s,
            check_interval_s=self.settings.health_check_interval_s,
            clock=clock,
        )
        self.health.register(self.settings.primary_backend)
        self.history = FallbackHistory(
            max_records=self.settings.fallback_history_max,
            window_s=self.settings.fallback_stats_window_s,
            clock=clock,
        )
        self.state_store = state_store or create_state_store(self.settings)

        executor_kwargs: dict[str, Any] = {"retry_delay_s": self.settings.retry_delay_s}
        if sleep is not None:
            executor_kwargs["sleep"] = sleep
        self.executor = RetryExecutor(self.health, **executor_kwargs)

        self.dispatcher = FallbackDispatcher(
            history=self.history,
            events=self.events,
            cache=self.cache if self.settings.cache_enabled else None,
            health=self.health,
            state_store=self.state_store,
            alternative_backends=alternative_backends,
            degraded_fn=degraded_fn,
            clock=clock,
        )
        self.orchestrator = OperationOrchestrator(
            settings=self.settings,
            health=self.health,
            executor=self.executor,
            dispatcher=self.dispatcher,
            history=self.history,
            events=self.events,
            cache=self.cache,
            clock=clock,
        )

    async def __aenter__(self) -> ResilienceRuntime:
        self.health.start()
        logger.debug("Resilience runtime started")
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.health.stop()
        self.state_store.close()
        logger.debug("Resilience runtime stopped")

    async def execute(
        self,
        primary_fn: PrimaryFn,
        *,
        payload: OperationPayload | None = None,
        operation_id: str | None = None,
        options: OperationOptions | None = None,
        manual_fallback: ManualFallbackFn | None = None,
    ) -> OperationResult:
        """Run one AI operation with cache, retry and fallback protection."""
        return await self.orchestrator.execute(
            primary_fn,
            payload=payload,
            operation_id=operation_id,
            options=options,
            manual_fallback=manual_fallback,
        )

    def get_stats(self) -> ResilienceStats:
        return self.orchestrator.get_stats()


async def execute_ai_operation(
    runtime: ResilienceRuntime,
    operation_id: str,
    ai_operation: PrimaryFn,
    fallback_operation: ManualFallbackFn | None = None,
    options: OperationOptions | None = None,
    payload: OperationPayload | None = None,
) -> OperationResult:
    """Positional-style convenience wrapper around ResilienceRuntime.execute."""
    return await runtime.execute(
        ai_operation,
        payload=payload,
        operation_id=operation_id,
        options=options,
        manual_fallback=fallback_operation,
    )
