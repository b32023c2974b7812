# src/tracking/fallback_history.py - v1
"""Bounded log of fallback dispatches.

Records live in a ring of fixed capacity; statistics only look at the
rolling window (24 hours by default). ``total`` keeps counting records
that have already rolled out of the ring.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter, deque
from pathlib import Path
from typing import Callable

from resilientai.tracking.models import FallbackRecord

logger = logging.getLogger(__name__)


class FallbackHistory:
    """Accumulates FallbackRecord entries for statistics."""

    def __init__(
        self,
        max_records: int = 1000,
        window_s: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._records: deque[FallbackRecord] = deque(maxlen=max_records)
        self._window_s = window_s
        self._clock = clock
        self._total = 0
        self._lock = threading.Lock()

    def record(
        self,
        operation_id: str,
        reason: str,
        strategy: str,
        attempts: int = 0,
        error: str | None = None,
    ) -> FallbackRecord:
        """Append a fallback record.

        Args:
            operation_id: Operation that fell back.
            reason: Reason code that triggered the fallback.
            strategy: Fallback strategy chosen.
            attempts: Primary attempts made before falling back.
            error: Message of the last primary error, if any.

        Returns:
            The recorded FallbackRecord.
        """
        entry = FallbackRecord(
            operation_id=operation_id,
            reason=reason,
            strategy=strategy,
            timestamp=self._clock(),
            attempts=attempts,
            error=error,
        )
        with self._lock:
            self._records.append(entry)
            self._total += 1
        return entry

    @property
    def records(self) -> list[FallbackRecord]:
        """All records still in the ring, oldest first."""
        with self._lock:
            return list(self._records)

    @property
    def total(self) -> int:
        """Fallbacks recorded since start, including pruned ones."""
        return self._total

    def recent(self) -> list[FallbackRecord]:
        """Records inside the rolling statistics window."""
        cutoff = self._clock() - self._window_s
        return [r for r in self.records if r.timestamp > cutoff]

    def reason_histogram(self) -> dict[str, int]:
        """Count of recent fallbacks per reason code."""
        return dict(Counter(r.reason for r in self.recent()))

    def prune(self) -> int:
        """Drop records older than the statistics window.

        Returns:
            Number of records removed.
        """
        cutoff = self._clock() - self._window_s
        with self._lock:
            before = len(self._records)
            kept = [r for r in self._records if r.timestamp > cutoff]
            self._records.clear()
            self._records.extend(kept)
            return before - len(kept)

    def save(self, path: Path) -> None:
        """Save all records to a JSON Lines file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            for record in self.records:
                f.write(json.dumps(record.model_dump(), default=str) + "\n")
