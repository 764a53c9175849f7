from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Engine with bounded waits so a hung database cannot pin request handlers."""
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.db_connect_timeout},
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        connect_args={
            "timeout": settings.db_connect_timeout,
            "command_timeout": settings.db_command_timeout,
        },
    )


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


# Models register on Base.metadata when imported
from db.product import Product, ProductVariant  # noqa: E402
from db.parties import Distributor, Salesperson, Shopkeeper  # noqa: E402
from db.order import Order, OrderItem, PartialPayment  # noqa: E402
from db.inventory.record import InventoryRecord  # noqa: E402
from db.inventory.dispatch import DistributorOrderRecord  # noqa: E402
from db.notification_job import NotificationJob  # noqa: E402

__all__ = [
    "Base",
    "utcnow",
    "build_engine",
    "engine",
    "async_session_maker",
    "create_db_and_tables",
    "get_async_session",
    "Product",
    "ProductVariant",
    "Distributor",
    "Salesperson",
    "Shopkeeper",
    "Order",
    "OrderItem",
    "PartialPayment",
    "InventoryRecord",
    "DistributorOrderRecord",
    "NotificationJob",
]
