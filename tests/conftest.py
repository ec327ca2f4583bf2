"""Pytest configuration and fixtures."""

import os

import pytest

# Set before app modules are imported: loggers read settings at import time
os.environ["REQ_ENGINE_ENV"] = "test"
os.environ["ORACLE_BACKEND"] = "heuristic"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["PAUSE_DEBOUNCE_SECONDS"] = "60"
os.environ["FALLBACK_INTERVAL_SECONDS"] = "600"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    from app.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Default settings with timers long enough to never fire on their own."""
    from app.core.config import Settings

    return Settings(
        ORACLE_BACKEND="heuristic",
        PAUSE_DEBOUNCE_SECONDS=60,
        FALLBACK_INTERVAL_SECONDS=600,
    )
