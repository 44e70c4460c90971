"""
Pytest configuration and fixtures.
"""

import sys
import os
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ADMIN_API_KEY", "admin-test-key")
os.environ.setdefault("SHIPROCKET_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.getcwd())

from app.config import FulfillmentConfig
from app.database import Base, get_db
from app.models import Product, ProductVariant, User
from app.services.shiprocket_service import Serviceability, ShippingRate

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def email_dispatch():
    """Confirmation emails are queued on Celery; never reach a broker in tests."""
    with patch(
        "app.services.payment_service.queue_order_confirmation",
        MagicMock(return_value=True),
    ) as mocked:
        yield mocked


@pytest.fixture(autouse=True)
def shiprocket_api():
    """Shiprocket answers with one cheap courier unless a test says otherwise."""
    with patch(
        "app.services.shiprocket_service.ShiprocketService.calculate_shipping_rate",
        AsyncMock(return_value=ShippingRate(
            success=True,
            shipping_cost=85.0,
            courier_name="Delhivery",
            courier_company_id=12,
            estimated_days=3,
        )),
    ) as rate, patch(
        "app.services.shiprocket_service.ShiprocketService.check_serviceability",
        AsyncMock(return_value=Serviceability(
            serviceable=True,
            available_couriers=["Delhivery"],
            min_days=2,
            max_days=4,
        )),
    ) as serviceability, patch(
        "app.services.shiprocket_service.ShiprocketService.create_order",
        AsyncMock(return_value={"shipment_id": 9001, "courier_name": "Delhivery", "awb_code": "AWB1"}),
    ) as create:
        yield MagicMock(
            calculate_shipping_rate=rate,
            check_serviceability=serviceability,
            create_order=create,
        )


@pytest.fixture
def fulfillment_config() -> FulfillmentConfig:
    return FulfillmentConfig(
        shipment_creation_enabled=False,
        max_pickup_retries=2,
        pending_order_ttl_minutes=30,
    )


@pytest_asyncio.fixture
async def client(db, fulfillment_config) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test session injected."""
    from app.main import app

    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    previous_config = app.state.fulfillment_config
    app.state.fulfillment_config = fulfillment_config

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.fulfillment_config = previous_config


@pytest_asyncio.fixture
async def user(db) -> User:
    user = User(email="asha@example.com", phone="9876543210", full_name="Asha Rao")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
def auth_headers(user):
    from app.api.deps import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest_asyncio.fixture
async def variant(db) -> ProductVariant:
    product = Product(uid="kurta-001", name="Silk Kurta", price=Decimal("1499.00"))
    variant = ProductVariant(product_uid=product.uid, sku="KURTA-001-M", stock=10, price=Decimal("1299.00"))
    db.add_all([product, variant])
    await db.commit()
    return variant


