# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for retry, cache, health and storage tuning.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Retry ===
    default_timeout_s: float = 10.0
    max_retries: int = 3
    retry_delay_s: float = 1.0

    # === Fallback ===
    default_strategy: Literal[
        "immediate_manual",
        "retry_then_manual",
        "cached_result",
        "alternative_ai",
        "degraded_function",
    ] = "retry_then_manual"
    preserve_state: bool = True
    primary_backend: str = "ai_primary"
    fallback_history_max: int = 1000
    fallback_stats_window_s: float = 24 * 60 * 60

    # === Contextual cache ===
    cache_enabled: bool = True
    cache_max_size: int = 100
    cache_ttl_s: float = 60 * 60
    cache_similarity_threshold: float = 0.6
    prompt_max_length: int = 200

    # === Service health ===
    health_check_interval_s: float = 60.0
    health_recovery_window_s: float = 5 * 60

    # === Preserved operation state ===
    state_backend: Literal["json", "sqlite", "memory"] = "json"
    state_root: Path = Path("~/.resilientai/state")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("max_retries", "cache_max_size", "fallback_history_max")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator(
        "default_timeout_s",
        "cache_ttl_s",
        "health_check_interval_s",
        "health_recovery_window_s",
        "fallback_stats_window_s",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("retry_delay_s")
    @classmethod
    def validate_retry_delay(cls, v: float) -> float:  # noqa: N805
        if v < 0:
            raise ValueError("retry_delay_s must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not 0.0 <= self.cache_similarity_threshold <= 1.0:
            errors.append("CACHE_SIMILARITY_THRESHOLD must be within [0, 1]")

        if self.prompt_max_length < 1:
            errors.append("PROMPT_MAX_LENGTH must be >= 1")

        if self.health_recovery_window_s < self.health_check_interval_s:
            errors.append(
                "HEALTH_RECOVERY_WINDOW_S must be >= HEALTH_CHECK_INTERVAL_S"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding apps).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
