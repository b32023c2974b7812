# src/resilience/retry.py - v1
"""Deadline-bounded retry loop with linear backoff.

Each attempt races the primary call against its deadline. A call that
misses the deadline is not cancelled: it keeps running in the background
and whatever it eventually returns is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from resilientai.health.tracker import ServiceHealthTracker
from resilientai.resilience.errors import AttemptTimeout, ResilienceError, RetryExhausted
from resilientai.resilience.models import Operation, OperationState

logger = logging.getLogger(__name__)

PrimaryFn = Callable[[dict[str, Any]], Awaitable[Any]]


def classify_error(error: BaseException) -> str:
    """Classify an exception into a fallback reason code."""
    if isinstance(error, ResilienceError):
        reason = getattr(error, "reason", None)
        if isinstance(reason, str) and reason:
            return reason

    msg = str(error).lower()
    name = type(error).__name__.lower()

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in name or "timed out" in msg:
        return "timeout"
    if "429" in msg or "rate limit" in msg or "ratelimit" in name:
        return "rate_limit"
    if isinstance(error, ConnectionError) or "connection" in name or "network" in msg:
        return "network_error"
    if any(c in msg for c in ("500", "502", "503", "504", "server error")):
        return "server_error"
    if "json" in msg or "parse" in msg or "decode" in msg or "invalid response" in msg:
        return "invalid_response"
    return "unknown"


def compute_delay(retry_delay_s: float, attempt: int) -> float:
    """Linear backoff: the n-th failed attempt (1-based) waits ``n * retry_delay_s``."""
    return retry_delay_s * attempt


@dataclass(frozen=True)
class RetryOutcome:
    """Successful result and the number of attempts it took."""

    result: Any
    attempts: int


class RetryExecutor:
    """Runs a primary call with a deadline and bounded retries."""

    def __init__(
        self,
        health: ServiceHealthTracker,
        retry_delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._health = health
        self._retry_delay_s = retry_delay_s
        self._sleep = sleep

    async def run(self, operation: Operation, primary_fn: PrimaryFn) -> RetryOutcome:
        """Attempt the primary call up to ``operation.max_retries`` times.

        Raises:
            RetryExhausted: If every attempt failed or timed out.
        """
        last_error: BaseException | None = None
        reason = "unknown"

        for attempt in range(1, operation.max_retries + 1):
            operation.attempts = attempt
            operation.transition(OperationState.IN_PROGRESS)

            try:
                result = await self._attempt(operation, primary_fn)
            except Exception as e:
                last_error = e
                reason = classify_error(e)
                self._health.mark_failure(operation.backend, reason)

                if attempt < operation.max_retries:
                    delay = compute_delay(self._retry_delay_s, attempt)
                    logger.warning(
                        "Operation '%s' - %s (attempt %d/%d), retrying in %.1fs",
                        operation.id, reason, attempt, operation.max_retries, delay,
                    )
                    await self._sleep(delay)
                else:
                    logger.warning(
                        "Operation '%s' - %s (attempt %d/%d), retries exhausted",
                        operation.id, reason, attempt, operation.max_retries,
                    )
                continue

            self._health.mark_success(operation.backend)
            return RetryOutcome(result=result, attempts=attempt)

        raise RetryExhausted(operation.attempts, reason, last_error)

    async def _attempt(self, operation: Operation, primary_fn: PrimaryFn) -> Any:
        task = asyncio.ensure_future(primary_fn(dict(operation.context)))
        done, _ = await asyncio.wait({task}, timeout=operation.timeout_s)
        if task in done:
            return task.result()

        task.add_done_callback(_make_late_result_handler(operation.id))
        raise AttemptTimeout(operation.timeout_s)


def _make_late_result_handler(operation_id: str) -> Callable[[asyncio.Future[Any]], None]:
    def _discard(task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Discarded late failure for '%s': %s", operation_id, error)
        else:
            logger.debug("Discarded late result for '%s'", operation_id)

    return _discard
