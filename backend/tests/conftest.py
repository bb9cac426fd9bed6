"""
GovGate — Test Configuration (conftest.py)
==========================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (fake clock, sessions, apps, API client).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.
Who:   Used by all test files in the tests/ directory.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── clock:          Manually advanced time source for guards and limiters
    ├── session:        In-memory session store for one simulated client
    ├── audit:          Audit sink that keeps its lines
    ├── test_settings:  Settings with known API keys
    ├── app:            Application built from test_settings (fresh counters)
    └── test_client:    HTTPX AsyncClient talking to `app`
"""

import os

# Override settings for testing BEFORE any app imports
# Why: Prevents the module-level app from picking up a developer's .env
os.environ["APP_ENV"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["SESSION_SECRET_KEY"] = "test-secret-not-real"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from govgate.config import Settings
from govgate.services.audit import MemoryAuditLog
from govgate.services.session_store import MemorySessionStore

USER_KEY = "user-key-123"
ADMIN_KEY = "admin-key-456"


class FakeClock:
    """Callable time source; tests move it forward explicitly."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return MemorySessionStore()


@pytest.fixture
def audit():
    return MemoryAuditLog()


@pytest.fixture
def test_settings():
    """
    Settings independent of the process environment.

    Two API keys: a regular user and an administrator.
    """
    return Settings(
        app_env="testing",
        session_secret_key="test-secret-not-real",
        api_keys={
            USER_KEY: {"user_id": "7", "roles": ["citizen"]},
            ADMIN_KEY: {"user_id": "1", "roles": ["admin"]},
        },
    )


@pytest.fixture
def app(test_settings):
    """A fresh application per test, so rate-limit counters never leak."""
    from govgate.main import create_app
    return create_app(test_settings)


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    What:    HTTPX AsyncClient configured to talk to our FastAPI app.
    Why:     Enables testing of HTTP endpoints without running a server.
    How:     Uses ASGITransport to route requests directly to the app; the
             client keeps the session cookie between requests.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
