"""
Pytest configuration and fixtures.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.database import Database
from app.fsm.states import OrderStatus, SettlementStatus
from app.models.order import Order, utcnow
from app.models.settlement import RiderSettlement

ADMIN_KEY = "test-admin-key"


@pytest_asyncio.fixture(scope="function")
async def store(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh file-backed SQLite database per test."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.create_all()
    yield database
    await database.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(store) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with store.session() as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="",
        payrex_webhook_secret="",
        admin_api_key=ADMIN_KEY,
        cloudinary_cloud_name="",
        cloudinary_api_key="",
        cloudinary_api_secret="",
    )


@pytest_asyncio.fixture(scope="function")
async def client(store, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, backed by the test database."""
    from app.main import app

    app.state.db = store
    app.state.redis = None
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def rider_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_order(db):
    """Insert an order directly, in any state."""

    async def _make(
        status: OrderStatus = OrderStatus.PENDING,
        cod_amount: str = "500.00",
        rider_id: Optional[uuid.UUID] = None,
        barcode: str = "PKG240101ABCD1234",
        updated_at: Optional[datetime] = None,
        **fields,
    ) -> Order:
        now = utcnow()
        order = Order(
            order_number=f"ORD-TEST-{uuid.uuid4().hex[:6].upper()}",
            package_description="Package",
            cod_amount=Decimal(cod_amount),
            barcode=barcode,
            status=OrderStatus(status).value,
            rider_id=rider_id,
            amount_paid=Decimal("0"),
            created_at=now,
            updated_at=updated_at or now,
            **fields,
        )
        db.add(order)
        await db.commit()
        return order

    return _make


@pytest.fixture
def make_settlement(db):
    """Insert a rider settlement directly."""

    async def _make(
        rider_id: Optional[uuid.UUID] = None,
        amount: str = "1000.00",
        status: SettlementStatus = SettlementStatus.PENDING,
        updated_at: Optional[datetime] = None,
        **fields,
    ) -> RiderSettlement:
        now = utcnow()
        settlement = RiderSettlement(
            rider_id=rider_id or uuid.uuid4(),
            date=fields.pop("date", now.date()),
            amount=Decimal(amount),
            amount_paid=Decimal("0"),
            status=SettlementStatus(status).value,
            settlement_reference="SET-TEST-0001",
            created_at=now,
            updated_at=updated_at or now,
            **fields,
        )
        db.add(settlement)
        await db.commit()
        return settlement

    return _make


@pytest.fixture
def reload(db: AsyncSession):
    """Read a row as currently stored, bypassing the identity map."""

    async def _reload(model, pk):
        return await db.get(model, pk, populate_existing=True)

    return _reload
