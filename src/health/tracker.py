# src/health/tracker.py - v1
"""Service health tracking with time-based auto-heal.

A backend turns unhealthy on its first failed attempt and healthy again on
the next success. A backend that has been quiet (no new failure) for the
recovery window is healed by whichever comes first: the next health check
on it or the background sweep. Healing is optimistic: it sends no test
request to the backend and assumes outages are transient.

Updates are last-write-wins. A slow failure report that lands after a
newer success will mark the backend unhealthy again; that is accepted.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from resilientai.events.bus import EventBus, LifecycleEvent
from resilientai.health.models import ServiceHealth

logger = logging.getLogger(__name__)


class ServiceHealthTracker:
    """Process-wide health state, one record per backend identifier."""

    def __init__(
        self,
        events: EventBus | None = None,
        recovery_window_s: float = 300.0,
        check_interval_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._events = events
        self._recovery_window_s = recovery_window_s
        self._check_interval_s = check_interval_s
        self._clock = clock
        self._records: dict[str, ServiceHealth] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    # --- State changes ---

    def mark_success(self, backend_id: str) -> None:
        """Record a successful call; emits a recovery notice if it was unhealthy."""
        now = self._clock()
        with self._lock:
            record = self._record(backend_id)
            was_unhealthy = not record.healthy
            record.healthy = True
            record.failure_count = 0
            record.last_success_at = now
            record.last_check_at = now
            record.unhealthy_since = None

        if was_unhealthy:
            logger.info("Backend '%s' recovered", backend_id)
            self._emit(LifecycleEvent.SERVICE_RECOVERED, backend_id=backend_id, auto_healed=False)

    def mark_failure(self, backend_id: str, reason: str) -> None:
        """Record a failed call; only the healthy->unhealthy edge is announced."""
        now = self._clock()
        with self._lock:
            record = self._record(backend_id)
            was_healthy = record.healthy
            record.healthy = False
            record.failure_count += 1
            record.last_failure_at = now
            record.last_failure_reason = reason
            record.last_check_at = now
            if was_healthy:
                record.unhealthy_since = now
            failures = record.failure_count

        if was_healthy:
            logger.warning("Backend '%s' degraded: %s", backend_id, reason)
            self._emit(LifecycleEvent.SERVICE_DEGRADED, backend_id=backend_id, reason=reason)
        else:
            logger.debug("Backend '%s' failure #%d: %s", backend_id, failures, reason)

    def is_healthy(self, backend_id: str) -> bool:
        """Backends never seen before are considered healthy.

        A backend quiet for the recovery window is healed on the spot, so
        gating never depends on the background sweep having run.
        """
        now = self._clock()
        with self._lock:
            record = self._records.get(backend_id)
            if record is None:
                return True
            if record.healthy:
                return True
            healed = self._heal_if_quiet(record, now)

        if healed:
            self._announce_auto_heal(backend_id)
        return healed

    def get(self, backend_id: str) -> ServiceHealth | None:
        with self._lock:
            record = self._records.get(backend_id)
            return None if record is None else record.model_copy()

    def snapshot(self) -> dict[str, ServiceHealth]:
        """Copies of all health records, safe to hand to callers."""
        with self._lock:
            return {k: v.model_copy() for k, v in self._records.items()}

    def register(self, backend_id: str) -> None:
        with self._lock:
            self._record(backend_id)

    # --- Auto-heal ---

    def sweep(self) -> list[str]:
        """Heal backends quiet for at least the recovery window.

        Returns:
            Identifiers of the backends that were healed.
        """
        now = self._clock()
        healed: list[str] = []
        with self._lock:
            for backend_id, record in list(self._records.items()):
                record.last_check_at = now
                if not record.healthy and self._heal_if_quiet(record, now):
                    healed.append(backend_id)

        for backend_id in healed:
            self._announce_auto_heal(backend_id)
        return healed

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval_s)
            try:
                self.sweep()
            except Exception:
                logger.exception("Health sweep failed")

    # --- Internals ---

    def _record(self, backend_id: str) -> ServiceHealth:
        # Caller holds the lock.
        record = self._records.get(backend_id)
        if record is None:
            record = ServiceHealth(backend_id=backend_id)
            self._records[backend_id] = record
        return record

    def _heal_if_quiet(self, record: ServiceHealth, now: float) -> bool:
        # Caller holds the lock.
        quiet_for = now - (record.last_failure_at or 0.0)
        if quiet_for < self._recovery_window_s:
            return False
        record.healthy = True
        record.failure_count = 0
        record.unhealthy_since = None
        return True

    def _announce_auto_heal(self, backend_id: str) -> None:
        logger.info("Backend '%s' auto-healed after quiet period", backend_id)
        self._emit(LifecycleEvent.SERVICE_RECOVERED, backend_id=backend_id, auto_healed=True)

    def _emit(self, event: LifecycleEvent, **data: object) -> None:
        if self._events is not None:
            self._events.publish(event, **data)
