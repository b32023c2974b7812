# src/cache/models.py - v1
"""Cache domain models: ConversationNode, CacheEntry, CacheLookupResult, CacheStats.

Timestamps are epoch seconds as returned by the cache clock.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ConversationNode(BaseModel):
    """One prior exchange in the conversational ancestry of a prompt."""

    prompt: str = ""
    ai_response: str = ""
    branch: str = "exploration"


class CacheEntryMetadata(BaseModel):
    """Provenance of a cached response, used for contextual matching."""

    created_at: float
    original_prompt: str
    normalized_prompt: str
    context_depth: int = 0
    context_signature: str = "root"
    conversation_focus: str = "creative"
    extra: dict[str, Any] = Field(default_factory=dict)


class CacheEntry(BaseModel):
    """Single cache entry linking a context fingerprint to a response."""

    fingerprint: str
    response: Any
    metadata: CacheEntryMetadata
    access_count: int = 0
    last_accessed_at: float


class CacheLookupResult(BaseModel):
    """Result of an exact or contextual cache lookup."""

    entry: CacheEntry
    cache_hit: Literal["exact", "contextual"]
    confidence: float = 1.0
    match_reason: str | None = None

    @property
    def response(self) -> Any:
        return self.entry.response


class PromptPrediction(BaseModel):
    """A likely follow-up prompt inferred from similar cached conversations."""

    prompt: str
    confidence: float
    reasoning: str = "Based on similar conversation patterns"


class CacheStats(BaseModel):
    """Counters describing cache effectiveness."""

    hits: int = 0
    misses: int = 0
    contextual_hits: int = 0
    evictions: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0
    contextual_hit_rate: float = 0.0
    size: int = 0
    max_size: int = 0


class CacheSnapshot(BaseModel):
    """Serializable dump of cache contents for persistence."""

    entries: list[dict[str, Any]] = Field(default_factory=list)
    stats: CacheStats = Field(default_factory=CacheStats)
    exported_at: float
