# src/cache/contextual_cache.py - v1
"""In-process response cache keyed by conversational context.

Lookup order:
  1. Exact fingerprint match (same focus, ancestry signature and prompt).
  2. Contextual match: the best non-expired entry with the same focus
     whose blended prompt/context similarity exceeds the threshold.

When full, the entry with the lowest usefulness score is evicted:
``(access_count + 1) * max(0, ttl - age) / ttl`` with age measured from
the last access. Cache operations never raise to the caller; any internal
error is logged and reported as a miss.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from resilientai.cache.fingerprint import (
    compute_fingerprint,
    context_signature,
    normalize_prompt,
)
from resilientai.cache.models import (
    CacheEntry,
    CacheEntryMetadata,
    CacheLookupResult,
    CacheSnapshot,
    CacheStats,
    ConversationNode,
    PromptPrediction,
)
from resilientai.core.similarity import (
    combined_similarity,
    context_similarity,
    jaccard_similarity,
)
from resilientai.resilience.errors import CacheCorruption

logger = logging.getLogger(__name__)

_FOLLOW_UPS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("how",), "How would we implement this?"),
    (("consider", "explore"), "What alternatives should we consider?"),
    (("problem", "challenge"), "How can we overcome these challenges?"),
)


class ContextualCache:
    """Bounded TTL cache with exact and similarity-scored lookup."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_s: float = 3600.0,
        similarity_threshold: float = 0.6,
        prompt_max_length: int = 200,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_s <= 0:
            raise ValueError("ttl_s must be > 0")
        self._entries: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._ttl_s = ttl_s
        self._threshold = similarity_threshold
        self._prompt_max_length = prompt_max_length
        self._clock = clock
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._contextual_hits = 0
        self._evictions = 0

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # --- Lookup ---

    def get(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None = None,
        focus: str = "creative",
        record_stats: bool = True,
    ) -> CacheLookupResult | None:
        """Return an exact or contextual hit, or None.

        Pass ``record_stats=False`` for a repeat lookup of a request that was
        already counted, so it does not skew hit and miss counters.
        """
        try:
            with self._lock:
                result = self._lookup_exact(prompt, ancestry, focus)
                if result is None:
                    result = self._lookup_contextual(prompt, ancestry, focus)
                if result is None:
                    if record_stats:
                        self._misses += 1
                    return None
                if record_stats:
                    if result.cache_hit == "exact":
                        self._hits += 1
                    else:
                        self._contextual_hits += 1
                self._record_hit(result.entry)
                return result.model_copy(update={"entry": result.entry.model_copy(deep=True)})
        except Exception as e:
            logger.warning("Cache lookup failed, treating as miss: %s", e)
            return None

    def _lookup_exact(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None,
        focus: str,
    ) -> CacheLookupResult | None:
        key = self.key_for(prompt, ancestry, focus)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.is_expired(entry):
            self._drop(key)
            return None

        meta = entry.metadata
        if (
            meta.normalized_prompt != normalize_prompt(prompt, self._prompt_max_length)
            or meta.conversation_focus != focus
            or meta.context_signature != context_signature(ancestry)
        ):
            # Hash collision: leave it to contextual scoring.
            return None

        logger.debug("Exact cache hit %s", key)
        return CacheLookupResult(entry=entry, cache_hit="exact", confidence=1.0)

    def _lookup_contextual(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None,
        focus: str,
    ) -> CacheLookupResult | None:
        normalized = normalize_prompt(prompt, self._prompt_max_length)
        signature = context_signature(ancestry)

        best: CacheLookupResult | None = None
        best_score = 0.0
        for key, entry in list(self._entries.items()):
            if self.is_expired(entry):
                self._drop(key)
                continue
            if entry.metadata.conversation_focus != focus:
                continue

            prompt_score = jaccard_similarity(normalized, entry.metadata.normalized_prompt)
            context_score = context_similarity(signature, entry.metadata.context_signature)
            score = combined_similarity(prompt_score, context_score)

            if score > self._threshold and score > best_score:
                best_score = score
                best = CacheLookupResult(
                    entry=entry,
                    cache_hit="contextual",
                    confidence=score,
                    match_reason=(
                        f"Prompt: {round(prompt_score * 100)}%, "
                        f"Context: {round(context_score * 100)}%"
                    ),
                )

        if best is not None:
            logger.debug(
                "Contextual cache hit %s (%.2f)", best.entry.fingerprint, best.confidence,
            )
        return best

    # --- Store ---

    def put(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None,
        focus: str,
        response: Any,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Insert a response; evicts the least useful entry when full.

        Returns:
            The fingerprint key, or None if the entry could not be stored.
        """
        try:
            key = self.key_for(prompt, ancestry, focus)
            now = self._clock()
            entry = CacheEntry(
                fingerprint=key,
                response=response,
                metadata=CacheEntryMetadata(
                    created_at=now,
                    original_prompt=prompt,
                    normalized_prompt=normalize_prompt(prompt, self._prompt_max_length),
                    context_depth=len(ancestry or ()),
                    context_signature=context_signature(ancestry),
                    conversation_focus=focus,
                    extra=dict(metadata or {}),
                ),
                access_count=0,
                last_accessed_at=now,
            )
            with self._lock:
                if key not in self._entries and len(self._entries) >= self._max_size:
                    self._evict_least_useful()
                self._entries[key] = entry
            return key
        except Exception as e:
            logger.warning("Cache store failed, entry dropped: %s", e)
            return None

    def key_for(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None = None,
        focus: str = "creative",
    ) -> str:
        return compute_fingerprint(prompt, ancestry, focus, self._prompt_max_length)

    # --- Expiry & eviction ---

    def is_expired(self, entry: CacheEntry) -> bool:
        """True once ttl has elapsed since the entry was created."""
        return self._clock() - entry.metadata.created_at >= self._ttl_s

    def usefulness(self, entry: CacheEntry) -> float:
        age = self._clock() - entry.last_accessed_at
        recency = max(0.0, self._ttl_s - age) / self._ttl_s
        return (entry.access_count + 1) * recency

    def _evict_least_useful(self) -> None:
        victim: str | None = None
        lowest = float("inf")
        for key, entry in list(self._entries.items()):
            score = self.usefulness(entry)
            if score < lowest:
                lowest = score
                victim = key
        if victim is not None:
            self._drop(victim)
            self._evictions += 1
            logger.debug("Evicted cache entry %s (usefulness %.3f)", victim, lowest)

    def cleanup(self) -> dict[str, int]:
        """Drop expired entries."""
        with self._lock:
            before = len(self._entries)
            for key, entry in list(self._entries.items()):
                if self.is_expired(entry):
                    self._drop(key)
            return {"cleaned": before - len(self._entries), "remaining": len(self._entries)}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._contextual_hits = self._evictions = 0

    def _record_hit(self, entry: CacheEntry) -> None:
        entry.access_count += 1
        entry.last_accessed_at = self._clock()

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)

    # --- Prediction ---

    def predict_next_prompts(
        self,
        prompt: str,
        ancestry: Sequence[ConversationNode] | None = None,
        focus: str = "creative",
        limit: int = 3,
    ) -> list[PromptPrediction]:
        """Guess likely follow-up prompts from similar cached conversations."""
        signature = context_signature(ancestry)
        candidates: list[tuple[float, str]] = []
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            if entry.metadata.conversation_focus != focus or self.is_expired(entry):
                continue
            score = context_similarity(signature, entry.metadata.context_signature)
            if score <= 0.5:
                continue
            follow_up = _infer_next_prompt(entry.response)
            if follow_up:
                candidates.append((score, follow_up))

        candidates.sort(key=lambda c: c[0], reverse=True)
        return [PromptPrediction(prompt=p, confidence=s) for s, p in candidates[:limit]]

    # --- Stats & persistence ---

    def stats(self) -> CacheStats:
        with self._lock:
            hits = self._hits + self._contextual_hits
            total = hits + self._misses
            return CacheStats(
                hits=hits,
                misses=self._misses,
                contextual_hits=self._contextual_hits,
                evictions=self._evictions,
                total_requests=total,
                hit_rate=round(hits / total * 100) if total else 0.0,
                contextual_hit_rate=round(self._contextual_hits / hits * 100) if hits else 0.0,
                size=len(self._entries),
                max_size=self._max_size,
            )

    def export_snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(
                entries=[e.model_dump(mode="json") for e in self._entries.values()],
                stats=self.stats(),
                exported_at=self._clock(),
            )

    def import_snapshot(self, snapshot: CacheSnapshot | dict[str, Any]) -> int:
        """Load entries from a snapshot; corrupt or expired entries are skipped.

        Returns:
            Number of entries loaded.
        """
        try:
            if not isinstance(snapshot, CacheSnapshot):
                snapshot = CacheSnapshot.model_validate(snapshot)
        except ValidationError as e:
            logger.warning("Rejected cache snapshot: %s", e)
            return 0

        loaded = 0
        with self._lock:
            for raw in snapshot.entries:
                try:
                    entry = self._validate_entry(raw)
                except CacheCorruption as e:
                    logger.warning("%s", e)
                    continue
                if self.is_expired(entry):
                    continue
                if entry.fingerprint not in self._entries and len(self._entries) >= self._max_size:
                    self._evict_least_useful()
                self._entries[entry.fingerprint] = entry
                loaded += 1
        return loaded

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_snapshot().model_dump_json(), encoding="utf-8")

    def load(self, path: Path) -> int:
        if not path.exists():
            return 0
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read cache snapshot %s: %s", path, e)
            return 0
        return self.import_snapshot(data)

    @staticmethod
    def _validate_entry(raw: Any) -> CacheEntry:
        key = raw.get("fingerprint", "?") if isinstance(raw, dict) else "?"
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as e:
            raise CacheCorruption(str(key), f"{e.error_count()} validation errors") from e
        if not entry.fingerprint:
            raise CacheCorruption(str(key), "empty fingerprint")
        return entry


def _infer_next_prompt(response: Any) -> str | None:
    if not isinstance(response, str):
        return None
    text = response.lower()
    for keywords, follow_up in _FOLLOW_UPS:
        if any(k in text for k in keywords):
            return follow_up
    return None
