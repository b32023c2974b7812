# src/tracking/models.py - v1
"""Tracking domain models: FallbackRecord, ResilienceStats."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from resilientai.cache.models import CacheStats
from resilientai.health.models import ServiceHealth


class FallbackRecord(BaseModel):
    """Audit entry appended every time a fallback is dispatched."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    reason: str
    strategy: str
    timestamp: float
    attempts: int = 0
    error: str | None = None


class ResilienceStats(BaseModel):
    """Read-only snapshot of the resilience layer, safe to poll."""

    total_fallbacks: int = 0
    recent_fallbacks: int = 0
    active_operation_count: int = 0
    per_backend_health: dict[str, ServiceHealth] = Field(default_factory=dict)
    cache_size: int = 0
    fallback_reason_histogram: dict[str, int] = Field(default_factory=dict)
    cache: CacheStats | None = None
