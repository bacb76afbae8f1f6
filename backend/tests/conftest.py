"""
Pytest configuration and fixtures.
"""
from typing import Any, AsyncGenerator, Callable, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paybridge.config import Settings
from paybridge.db.init_db import build_engine, create_tables, get_db
from paybridge.gateways import build_gateway_router
from paybridge.gateways.router import GatewayRouter
from paybridge.main import app, attach_services
from paybridge.services.identity_service import issue_access_token
from paybridge.services.notification_service import TransactionEventHub
from paybridge.services.payment_orchestrator import PaymentOrchestrator
from paybridge.services.webhook_reconciler import WebhookReconciler


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with generous rate limits."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        database_path=str(tmp_path / "paybridge_test.db"),
        jwt_secret="test-jwt-secret",
        gateway_timeout_seconds=2.0,
        rate_limit_max_requests=10_000,
        auth_rate_limit_max_requests=10_000,
        payment_rate_limit_max_requests=10_000,
    )


@pytest_asyncio.fixture
async def session_factory(test_settings: Settings) -> AsyncGenerator[async_sessionmaker, Any]:
    """Per-test SQLite database with all tables created."""
    engine = build_engine(test_settings.database_path)
    await create_tables(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway_router(test_settings: Settings) -> GatewayRouter:
    return build_gateway_router(test_settings)


@pytest.fixture
def event_hub() -> TransactionEventHub:
    return TransactionEventHub()


@pytest.fixture
def orchestrator(gateway_router, event_hub, test_settings) -> PaymentOrchestrator:
    return PaymentOrchestrator(gateway_router, test_settings.gateway_timeout_seconds, event_hub)


@pytest.fixture
def reconciler(gateway_router, event_hub, test_settings) -> WebhookReconciler:
    return WebhookReconciler(gateway_router, event_hub, test_settings.gateway_timeout_seconds)


@pytest_asyncio.fixture
async def client(test_settings, session_factory) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client bound to the per-test database."""
    attach_services(app, test_settings, session_factory)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(test_settings) -> Callable[..., Dict[str, str]]:
    """Build Authorization headers for a principal."""

    def make(owner_id: str = "merchant_001", role: str = "merchant") -> Dict[str, str]:
        token = issue_access_token(owner_id, role, test_settings)
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def sample_payment_data() -> Dict[str, Any]:
    """Sample create-payment body."""
    return {
        "amount": 50.00,
        "currency": "USD",
        "description": "Order #1042",
        "customerEmail": "buyer@example.com",
        "customerName": "Test Buyer",
        "gateway": "stripe",
        "metadata": {"order_id": "1042"},
    }
