import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RUN_WORKER_IN_PROCESS", "false")

from decimal import Decimal  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from db.database import (  # noqa: E402
    Distributor,
    Product,
    ProductVariant,
    Salesperson,
    Shopkeeper,
    build_engine,
    create_db_and_tables,
    get_async_session,
)
from services.mailer import DeliveryError, Mailer, PermanentDeliveryError  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_db_and_tables(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def catalog(session_maker):
    """Products 1 (100.00) and 2 (50.00), a priced variant of product 1, distributors 7 and 8, and parties."""
    async with session_maker() as s:
        s.add_all(
            [
                Product(id=1, name="Basmati Rice 5kg", sku_id="RICE-5", retailer_price=Decimal("100.00"),
                        distributor_price=Decimal("90.00"), mrp=Decimal("120.00")),
                Product(id=2, name="Sunflower Oil 1L", sku_id="OIL-1", retailer_price=Decimal("50.00"),
                        distributor_price=Decimal("45.00"), mrp=Decimal("60.00")),
                ProductVariant(id=10, product_id=1, variant_name="Size", variant_value="10kg", price=Decimal("180.00")),
                ProductVariant(id=11, product_id=2, variant_name="Size", variant_value="5L", price=None),
                Salesperson(id=3, name="Ravi", email="ravi@sales.example"),
                Distributor(id=7, name="North Depot", email="depot@north.example"),
                Distributor(id=8, name="South Depot", email="depot@south.example"),
                Shopkeeper(id=5, name="Corner Store", email="corner@shop.example", salesperson_id=3),
                Shopkeeper(id=6, name="No Mail Mart", email=None, salesperson_id=3),
            ]
        )
        await s.commit()


class FakeMailer(Mailer):
    def __init__(self, mode: str = "ok"):
        self.mode = mode
        self.sent: List[dict] = []
        self.calls = 0

    async def send(self, recipients: List[str], subject: str, html: str) -> Optional[str]:
        self.calls += 1
        if self.mode == "fail":
            raise DeliveryError("SMTP unavailable")
        if self.mode == "permanent":
            raise PermanentDeliveryError("Invalid email address")
        self.sent.append({"recipients": list(recipients), "subject": subject, "html": html})
        return f"<msg-{self.calls}@test>"


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
async def client(session_maker):
    from main import app

    async def _session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
