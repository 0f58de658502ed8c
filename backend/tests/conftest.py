# backend/tests/conftest.py
"""
Pytest configuration for the RivoHome backend.

Rate limiting is configured through the environment, so the flags below must
be in place before anything imports rivohome.core.config.
"""

import os

# CRITICAL: Set testing mode BEFORE any rivohome imports!
os.environ["CI"] = "true"
os.environ["IS_TESTING"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["RATE_LIMIT_REDIS_URL"] = ""
os.environ["RATE_LIMIT_BYPASS_TOKEN"] = ""
os.environ["RATE_LIMIT_NAMESPACE"] = ""
os.environ["RATE_LIMIT_RUNTIME"] = "server"

import pytest

from rivohome.core.config import settings
from rivohome.ratelimit import limiter as limiter_module
from rivohome.ratelimit.stores import get_process_memory_store


@pytest.fixture(autouse=True)
def _reset_rate_limit_state():
    """Every test starts with empty local counters and no cached limiter."""
    get_process_memory_store().clear()
    limiter_module.set_rate_limiter(None)
    yield
    limiter_module.set_rate_limiter(None)
    get_process_memory_store().clear()


@pytest.fixture
def rl_settings(monkeypatch):
    """The live settings object, safe to monkeypatch per test."""
    monkeypatch.setattr(settings, "rate_limit_enabled", True)
    return settings
