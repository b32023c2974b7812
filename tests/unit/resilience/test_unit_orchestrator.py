# tests/unit/resilience/test_unit_orchestrator.py - v1
"""Tests for OperationOrchestrator via the ResilienceRuntime composition root."""

from __future__ import annotations

import asyncio
import sqlite3
from unittest.mock import AsyncMock

import pytest

from resilientai.api.facade import ResilienceRuntime, execute_ai_operation
from resilientai.config.settings import Settings
from resilientai.events.bus import LifecycleEvent
from resilientai.resilience.errors import FallbackExhausted
from resilientai.resilience.fallback import friendly_message
from resilientai.resilience.models import (
    FallbackStrategy,
    OperationOptions,
    OperationPayload,
    OperationState,
)

PROMPT = "Suggest a warm palette for the forest scene"


def _payload(prompt: str = PROMPT) -> OperationPayload:
    return OperationPayload(prompt=prompt)


def _kinds(captured, operation_id=None) -> list[LifecycleEvent]:
    return [
        n.event for n in captured
        if operation_id is None or n.data.get("operation_id") == operation_id
    ]


class TestPrimaryPath:
    @pytest.mark.asyncio
    async def test_success_then_exact_cache_hit(self, runtime):
        primary = AsyncMock(return_value="green and amber")

        first = await runtime.execute(primary, payload=_payload())
        second = await runtime.execute(primary, payload=_payload())

        assert first.success and not first.fallback_used
        assert first.attempts == 1
        assert first.cache_hit is None
        assert second.result == "green and amber"
        assert second.cache_hit == "exact"
        assert second.confidence == 1.0
        assert second.attempts == 0
        assert primary.await_count == 1

    @pytest.mark.asyncio
    async def test_contextual_cache_hit(self, runtime):
        primary = AsyncMock(return_value="forest palette")
        await runtime.execute(primary, payload=_payload())
        hit = await runtime.execute(
            primary, payload=_payload("Suggest a warm palette for the desert scene"),
        )
        assert hit.cache_hit == "contextual"
        assert 0.6 < hit.confidence < 1.0
        assert primary.await_count == 1

    @pytest.mark.asyncio
    async def test_success_after_two_failures(self, runtime):
        primary = AsyncMock(side_effect=[RuntimeError("boom"), RuntimeError("boom"), "ok"])
        result = await runtime.execute(primary, payload=_payload())
        assert result.result == "ok"
        assert result.attempts == 3
        assert not result.fallback_used

    @pytest.mark.asyncio
    async def test_no_payload_means_no_caching(self, runtime):
        primary = AsyncMock(return_value="ok")
        await runtime.execute(primary)
        await runtime.execute(primary)
        assert primary.await_count == 2
        assert len(runtime.cache) == 0

    @pytest.mark.asyncio
    async def test_cache_disabled(self, clock):
        runtime = ResilienceRuntime(
            settings=Settings(_env_file=None, state_backend="memory", retry_delay_s=0, cache_enabled=False),
            clock=clock,
        )
        primary = AsyncMock(return_value="ok")
        await runtime.execute(primary, payload=_payload())
        await runtime.execute(primary, payload=_payload())
        assert primary.await_count == 2
        assert runtime.get_stats().cache is None

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, runtime, captured):
        await runtime.execute(AsyncMock(return_value="ok"), operation_id="op-ok")
        assert _kinds(captured, "op-ok") == [
            LifecycleEvent.OPERATION_STARTED,
            LifecycleEvent.OPERATION_COMPLETED,
        ]
        assert captured[-1].data["success"] is True

    @pytest.mark.asyncio
    async def test_options_override_settings(self, runtime):
        primary = AsyncMock(side_effect=RuntimeError("boom"))
        result = await runtime.execute(
            primary,
            options=OperationOptions(max_retries=1, strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        assert primary.await_count == 1
        assert result.fallback_strategy is FallbackStrategy.DEGRADED_FUNCTION

    def test_create_operation_defaults(self, runtime, clock):
        op = runtime.orchestrator.create_operation()
        assert op.timeout_s == 10.0
        assert op.max_retries == 3
        assert op.strategy is FallbackStrategy.RETRY_THEN_MANUAL
        assert op.preserve_state is True
        assert op.backend == "ai_primary"
        assert op.started_at == clock()
        assert op.state is OperationState.PENDING


class TestFallbackPath:
    @pytest.mark.asyncio
    async def test_timeouts_then_cache_miss_fail(self, runtime, captured):
        async def slow(_ctx):
            await asyncio.sleep(0.05)
            return "late"

        with pytest.raises(FallbackExhausted) as exc_info:
            await runtime.execute(
                slow,
                payload=_payload(),
                operation_id="op-slow",
                options=OperationOptions(timeout_s=0.01, strategy=FallbackStrategy.CACHED_RESULT),
            )

        err = exc_info.value
        assert err.original_reason == "timeout"
        assert err.reason == "no_cache_available"
        assert err.message == friendly_message("no_cache_available")
        completed = [n for n in captured if n.event is LifecycleEvent.OPERATION_COMPLETED]
        assert completed[-1].data["success"] is False
        assert runtime.history.total == 1

        await asyncio.sleep(0.1)
        assert len(runtime.cache) == 0

    @pytest.mark.asyncio
    async def test_retry_bound_then_degraded(self, runtime):
        primary = AsyncMock(side_effect=ConnectionError("down"))
        result = await runtime.execute(
            primary,
            payload=_payload(),
            options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        assert primary.await_count == 3
        assert result.fallback_used
        assert result.fallback_reason == "network_error"
        assert result.result.degraded is True
        assert result.attempts == 3
        # degraded output is never cached
        assert len(runtime.cache) == 0

    @pytest.mark.asyncio
    async def test_linear_backoff_between_attempts(self, runtime):
        runtime.executor._retry_delay_s = 0.5
        primary = AsyncMock(side_effect=RuntimeError("boom"))
        await runtime.execute(
            primary, options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        delays = [c.args[0] for c in runtime.executor._sleep.await_args_list]
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_manual_fallback_result_verbatim(self, runtime, state_store):
        primary = AsyncMock(side_effect=RuntimeError("boom"))
        manual = AsyncMock(return_value={"typed_by": "user"})

        result = await runtime.execute(
            primary,
            operation_id="op-manual",
            options=OperationOptions(context={"scene": "forest"}),
            manual_fallback=manual,
        )

        assert result.result == {"typed_by": "user"}
        assert result.fallback_strategy is FallbackStrategy.RETRY_THEN_MANUAL
        assert result.fallback_reason == "unknown"
        request = manual.await_args.args[0]
        assert request.context == {"scene": "forest"}
        assert await state_store.list_keys() == ["operation_state_op-manual"]

    @pytest.mark.asyncio
    async def test_missing_manual_function_fails(self, runtime):
        with pytest.raises(FallbackExhausted) as exc_info:
            await runtime.execute(AsyncMock(side_effect=RuntimeError("boom")))
        assert exc_info.value.reason == "no_manual_fallback"

    @pytest.mark.asyncio
    async def test_alternative_result_is_cached(self, settings, state_store, clock):
        class Backup:
            backend_id = "backup"

            async def run(self, operation):
                return "backup answer"

        runtime = ResilienceRuntime(
            settings=settings,
            state_store=state_store,
            alternative_backends=[Backup()],
            clock=clock,
            sleep=AsyncMock(),
        )
        primary = AsyncMock(side_effect=RuntimeError("boom"))
        options = OperationOptions(strategy=FallbackStrategy.ALTERNATIVE_AI)

        first = await runtime.execute(primary, payload=_payload(), options=options)
        second = await runtime.execute(primary, payload=_payload(), options=options)

        assert first.result == "backup answer"
        assert first.fallback_used
        assert second.cache_hit == "exact"
        assert primary.await_count == 3


class TestHealthGating:
    @pytest.mark.asyncio
    async def test_unhealthy_backend_skips_primary(self, runtime, captured):
        runtime.health.mark_failure("ai_primary", "timeout")
        primary = AsyncMock(return_value="ok")

        result = await runtime.execute(
            primary, options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )

        primary.assert_not_awaited()
        assert result.fallback_reason == "service_unhealthy"
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_auto_heal_restores_primary(self, runtime, clock):
        runtime.health.mark_failure("ai_primary", "timeout")
        clock.advance(300)
        assert runtime.health.sweep() == ["ai_primary"]

        primary = AsyncMock(return_value="ok")
        result = await runtime.execute(primary)

        assert result.result == "ok"
        assert not result.fallback_used

    @pytest.mark.asyncio
    async def test_failures_mark_backend_unhealthy(self, runtime):
        await runtime.execute(
            AsyncMock(side_effect=RuntimeError("boom")),
            options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        second = AsyncMock(return_value="ok")
        result = await runtime.execute(
            second, options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        second.assert_not_awaited()
        assert result.fallback_reason == "service_unhealthy"
        assert result.result.degraded is True

    @pytest.mark.asyncio
    async def test_unhealthy_backend_without_manual_function_fails(self, runtime):
        runtime.health.mark_failure("ai_primary", "timeout")
        primary = AsyncMock(return_value="ok")

        with pytest.raises(FallbackExhausted) as exc_info:
            await runtime.execute(primary)

        primary.assert_not_awaited()
        assert exc_info.value.original_reason == "service_unhealthy"
        assert exc_info.value.reason == "no_manual_fallback"

    @pytest.mark.asyncio
    async def test_primary_heals_after_quiet_window_without_sweep(self, runtime, clock, captured):
        degraded = OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION)
        await runtime.execute(AsyncMock(side_effect=RuntimeError("boom")), options=degraded)
        assert not runtime.health.get("ai_primary").healthy

        clock.advance(300)
        primary = AsyncMock(return_value="ok")
        result = await runtime.execute(primary, options=degraded)

        primary.assert_awaited_once()
        assert result.result == "ok"
        assert not result.fallback_used
        recovered = [n for n in captured if n.event is LifecycleEvent.SERVICE_RECOVERED]
        assert recovered[-1].data == {"backend_id": "ai_primary", "auto_healed": True}


class TestInFlightRegistry:
    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, runtime):
        release = asyncio.Event()
        started = asyncio.Event()

        async def blocking(_ctx):
            started.set()
            await release.wait()
            return "ok"

        first = asyncio.create_task(runtime.execute(blocking, operation_id="dup"))
        await started.wait()
        assert runtime.get_stats().active_operation_count == 1

        with pytest.raises(ValueError, match="already in flight"):
            await runtime.execute(blocking, operation_id="dup")

        release.set()
        assert (await first).result == "ok"
        assert runtime.get_stats().active_operation_count == 0

    @pytest.mark.asyncio
    async def test_id_reusable_after_completion(self, runtime):
        primary = AsyncMock(return_value="ok")
        await runtime.execute(primary, operation_id="again")
        await runtime.execute(primary, operation_id="again")
        assert primary.await_count == 2


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_snapshot(self, runtime):
        ok = AsyncMock(return_value="fine")
        await runtime.execute(ok, payload=_payload())
        await runtime.execute(ok, payload=_payload())
        await runtime.execute(
            AsyncMock(side_effect=ConnectionError("down")),
            options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )

        stats = runtime.get_stats()
        assert stats.total_fallbacks == 1
        assert stats.recent_fallbacks == 1
        assert stats.fallback_reason_histogram == {"network_error": 1}
        assert stats.cache_size == 1
        assert stats.cache.hits == 1
        assert stats.active_operation_count == 0
        assert stats.per_backend_health["ai_primary"].healthy is False

    @pytest.mark.asyncio
    async def test_cached_result_fallback_counts_one_request(self, runtime):
        with pytest.raises(FallbackExhausted):
            await runtime.execute(
                AsyncMock(side_effect=RuntimeError("boom")),
                payload=_payload(),
                options=OperationOptions(strategy=FallbackStrategy.CACHED_RESULT),
            )

        cache_stats = runtime.get_stats().cache
        assert cache_stats.misses == 1
        assert cache_stats.total_requests == 1

    @pytest.mark.asyncio
    async def test_stats_window(self, runtime, clock):
        await runtime.execute(
            AsyncMock(side_effect=RuntimeError("boom")),
            options=OperationOptions(strategy=FallbackStrategy.DEGRADED_FUNCTION),
        )
        clock.advance(24 * 60 * 60)
        stats = runtime.get_stats()
        assert stats.total_fallbacks == 1
        assert stats.recent_fallbacks == 0


class TestFacade:
    @pytest.mark.asyncio
    async def test_execute_ai_operation(self, runtime):
        result = await execute_ai_operation(
            runtime, "op-facade", AsyncMock(side_effect=RuntimeError("boom")), lambda r: "manual",
        )
        assert result.operation_id == "op-facade"
        assert result.result == "manual"

    @pytest.mark.asyncio
    async def test_context_manager_runs_health_sweep(self, runtime):
        async with runtime as rt:
            assert rt.health.running
        assert not runtime.health.running

    @pytest.mark.asyncio
    async def test_context_manager_closes_state_store(self, clock, tmp_path):
        settings = Settings(_env_file=None, state_backend="sqlite", state_root=tmp_path)
        runtime = ResilienceRuntime(settings=settings, clock=clock, sleep=AsyncMock())
        async with runtime:
            assert await runtime.state_store.list_keys() == []
        with pytest.raises(sqlite3.ProgrammingError):
            runtime.state_store._conn.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_context_manager_with_memory_store(self, runtime, state_store):
        async with runtime:
            pass
        assert await state_store.list_keys() == []
