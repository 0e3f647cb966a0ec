"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Stripe network calls are mocked;
webhook signatures are real HMAC-SHA256 in the Stripe header format.
"""
import os

# Settings are read at import time by billing.db.session
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRODUCT_MENSAL"] = "prod_mensal"
os.environ["STRIPE_PRICE_MENSAL"] = "price_mensal"
os.environ["STRIPE_PRODUCT_ANUAL"] = "prod_anual"
os.environ["STRIPE_PRICE_ANUAL"] = "price_anual"

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billing.constants import ROLE_MASTER_ADMIN
from billing.db.session import get_db
from billing.models import Base, User
from billing.services.stripe_gateway import StripeGateway, get_gateway
from billing.services.webhook_processor import WebhookProcessor, WebhookProcessorConfig
from helpers import WEBHOOK_SECRET, make_subscription


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def gateway():
    """Real gateway (real signature checks) with every Stripe network call mocked."""
    gw = StripeGateway("sk_test_123")
    gw.retrieve_subscription = AsyncMock(return_value=make_subscription())
    gw.retrieve_customer_email = AsyncMock(return_value=None)
    gw.create_checkout_session = AsyncMock(
        return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}
    )
    gw.list_active_subscriptions = AsyncMock(return_value=[])
    gw.list_paid_invoices = AsyncMock(return_value=[])
    gw.retrieve_product_name = AsyncMock(return_value="Plano Mensal")
    gw.create_product_with_price = AsyncMock(return_value=({"id": "prod_new"}, {"id": "price_new"}))
    return gw


@pytest.fixture
def processor_config():
    return WebhookProcessorConfig(
        provider_secret_key="sk_test_123",
        webhook_signing_secret=WEBHOOK_SECRET,
        storage_connection="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def processor(processor_config, gateway):
    return WebhookProcessor(processor_config, gateway=gateway)


@pytest.fixture
async def user(db):
    u = User(email="owner@clinic.com", display_name="Clinic Owner", clinic_name="Clínica Sol")
    db.add(u)
    await db.commit()
    return u


@pytest.fixture
async def master_admin(db):
    u = User(email="master@getclinicas.com", display_name="Master", role=ROLE_MASTER_ADMIN)
    db.add(u)
    await db.commit()
    return u


@pytest.fixture
def app(db, gateway, processor):
    """Application wired to the test database, gateway and processor (no lifespan)."""
    from billing.app import create_app

    application = create_app()
    application.state.webhook_processor = processor

    async def _get_db():
        yield db

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_gateway] = lambda: gateway
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
