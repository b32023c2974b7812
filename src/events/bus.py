# src/events/bus.py - v1
"""Lifecycle notifications published to read-only subscribers.

Publishing never blocks and never fails: subscriber errors are logged,
coroutine subscribers are scheduled on the running loop and not awaited.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    OPERATION_STARTED = "ai.fallback.operation_started"
    OPERATION_COMPLETED = "ai.fallback.operation_completed"
    FALLBACK_TRIGGERED = "ai.fallback.fallback_triggered"
    FALLBACK_SUCCEEDED = "ai.fallback.fallback_succeeded"
    FALLBACK_FAILED = "ai.fallback.fallback_failed"
    MANUAL_OVERRIDE_ACTIVATED = "ai.fallback.manual_override_activated"
    SERVICE_DEGRADED = "ai.fallback.service_degraded"
    SERVICE_RECOVERED = "ai.fallback.service_recovered"


class Notification(BaseModel):
    """One published lifecycle event."""

    event: LifecycleEvent
    timestamp: float
    data: dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[Notification], Any]


class EventBus:
    """Observer list for lifecycle notifications."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._subscribers: list[Subscriber] = []
        self._clock = clock
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a handle that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: LifecycleEvent, **data: Any) -> Notification:
        """Deliver an event to every subscriber."""
        notification = Notification(event=event, timestamp=self._clock(), data=data)
        for callback in list(self._subscribers):
            try:
                outcome = callback(notification)
                if inspect.isawaitable(outcome):
                    self._schedule(outcome)
            except Exception:
                logger.exception("Subscriber failed on %s", event.value)
        return notification

    def _schedule(self, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: async subscribers cannot be served.
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Dropped async subscriber outside of an event loop")
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)
        task.add_done_callback(self._on_subscriber_done)

    def _on_subscriber_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async subscriber failed: %s", task.exception(),
            )
