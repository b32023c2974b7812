# src/resilience/errors.py - v1
"""Error taxonomy for resilient AI operations.

Only FallbackExhausted crosses the orchestrator boundary. Everything else
is contained by the retry loop, the fallback dispatcher or the cache.
"""

from __future__ import annotations


class ResilienceError(Exception):
    """Base class for all resilience errors."""


class AttemptTimeout(ResilienceError):
    """A primary call exceeded its deadline. Retryable."""

    reason = "timeout"

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"AI operation timed out after {timeout_s:.1f}s")


class TransientBackendError(ResilienceError):
    """A primary call raised. Retryable up to the configured limit."""

    def __init__(self, reason: str, cause: BaseException | None = None):
        self.reason = reason
        self.cause = cause
        super().__init__(f"{reason}: {cause}" if cause else reason)


class ServiceUnhealthy(ResilienceError):
    """Retries skipped because the backend is currently marked unhealthy."""

    reason = "service_unhealthy"

    def __init__(self, backend_id: str):
        self.backend_id = backend_id
        super().__init__(f"Backend '{backend_id}' is marked unhealthy")


class RetryExhausted(ResilienceError):
    """All attempts against the primary backend failed."""

    def __init__(self, attempts: int, reason: str, last_error: BaseException | None):
        self.attempts = attempts
        self.reason = reason
        self.last_error = last_error
        super().__init__(
            f"Primary operation failed after {attempts} attempts ({reason}): {last_error}"
        )


class FallbackFailed(ResilienceError):
    """The selected fallback strategy could not produce a result."""

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class FallbackExhausted(ResilienceError):
    """Both the primary path and the fallback failed.

    Attributes:
        original_reason: Why the primary path was abandoned.
        reason: Why the fallback failed (e.g. ``no_cache_available``).
        message: Human-readable text suitable for direct display.
    """

    def __init__(
        self,
        operation_id: str,
        original_reason: str,
        reason: str,
        message: str,
    ):
        self.operation_id = operation_id
        self.original_reason = original_reason
        self.reason = reason
        self.message = message
        super().__init__(
            f"Both AI and fallback operations failed "
            f"(original: {original_reason}, fallback: {reason}): {message}"
        )


class CacheCorruption(ResilienceError):
    """A stored cache entry is structurally invalid. Treated as a miss."""

    def __init__(self, key: str, detail: str):
        self.key = key
        self.detail = detail
        super().__init__(f"Corrupt cache entry {key!r}: {detail}")


class InvalidTransition(ResilienceError):
    """An operation state change not allowed by the lifecycle."""

    def __init__(self, operation_id: str, current: str, target: str):
        self.operation_id = operation_id
        self.current = current
        self.target = target
        super().__init__(
            f"Operation '{operation_id}' cannot move from {current} to {target}"
        )
