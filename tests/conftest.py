# tests/conftest.py - v1
"""Shared test fixtures for unit and integration tests.

Provides a controllable clock, settings without .env, an event bus with a
capturing subscriber and a fully wired runtime. No real AI backend is
ever called; primary functions are AsyncMocks or local coroutines.
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from resilientai.api.facade import ResilienceRuntime
from resilientai.cache.models import ConversationNode
from resilientai.config.settings import Settings
from resilientai.events.bus import EventBus, Notification
from resilientai.storage.memory_store import MemoryStateStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, state_backend="memory", retry_delay_s=0.0)


@pytest.fixture
def events(clock) -> EventBus:
    return EventBus(clock=clock)


@pytest.fixture
def captured(events) -> list[Notification]:
    """Every notification published on the ``events`` bus."""
    received: list[Notification] = []
    events.subscribe(received.append)
    return received


@pytest.fixture
def state_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def runtime(settings, state_store, events, clock) -> ResilienceRuntime:
    return ResilienceRuntime(
        settings=settings,
        state_store=state_store,
        events=events,
        clock=clock,
        sleep=AsyncMock(),
    )


@pytest.fixture
def sample_ancestry() -> list[ConversationNode]:
    """Two-step conversation about a colour palette."""
    return [
        ConversationNode(
            prompt="I love this colour palette",
            ai_response="Great palette choices",
            branch="exploration",
        ),
        ConversationNode(
            prompt="Palette needs warmer colour",
            ai_response="",
            branch="deepen",
        ),
    ]


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers installed by setup_logging so they never outlive a test."""
    yield
    logger = logging.getLogger("resilientai")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
