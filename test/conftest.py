"""
Pytest configuration and fixtures
In-memory Motor database plus stubbed external services
"""
import asyncio
import os

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYSTACK_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("STATS_CACHE_TTL_SECONDS", "60")

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from main import app
from signaldesk.database.connection import get_database, get_optional_database
from signaldesk.payments.verifier import get_payment_verifier
from signaldesk.scan.provider import get_analysis_provider
from signaldesk.stats.routes import stats_cache
from signaldesk.trade.bridge import get_trade_bridge

from helpers import StubBridge, StubProvider, StubVerifier


@pytest.fixture
def db():
    """Fresh in-memory database per test"""
    return AsyncMongoMockClient()["signaldesk_test"]


@pytest.fixture
def run():
    """Run a coroutine from a synchronous test (seeding / asserting on the store)"""
    return asyncio.run


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def bridge():
    return StubBridge()


@pytest.fixture
def client(db, provider, verifier, bridge):
    """TestClient with the store and every external service overridden"""

    async def override_get_database():
        return db

    app.dependency_overrides[get_database] = override_get_database
    app.dependency_overrides[get_optional_database] = override_get_database
    app.dependency_overrides[get_analysis_provider] = lambda: provider
    app.dependency_overrides[get_payment_verifier] = lambda: verifier
    app.dependency_overrides[get_trade_bridge] = lambda: bridge
    stats_cache.invalidate()

    yield TestClient(app)

    app.dependency_overrides.clear()
    stats_cache.invalidate()
