# src/health/models.py - v1
"""Per-backend health record."""

from __future__ import annotations

from pydantic import BaseModel


class ServiceHealth(BaseModel):
    """Health of one backend, derived from its recent call history."""

    backend_id: str
    healthy: bool = True
    failure_count: int = 0
    last_failure_at: float | None = None
    last_failure_reason: str | None = None
    last_success_at: float | None = None
    last_check_at: float | None = None
    unhealthy_since: float | None = None
