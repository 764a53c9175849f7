"""
Inventory ledger and valuation engine.

Stock is never stored; it is derived from two append-only tables:

    available(product) = sum(inventory_records.quantity) - sum(distributor_orders.quantity)

Accepting a distributor order is a read-check-append sequence. It runs under a
per-product lock (in-process) and, on PostgreSQL, a transaction-scoped advisory
lock keyed by product id, so concurrent acceptances for the same product are
serialised across API processes too.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import InsufficientStockError, NotFoundError, ValidationError
from core.locks import KeyedLock
from db.database import Distributor, DistributorOrderRecord, InventoryRecord, Product
from schemas.inventory import PriceBasis

logger = structlog.get_logger(__name__)

# Shared by every ledger instance in this process
product_locks = KeyedLock()

# pg_advisory_xact_lock(namespace, product_id)
_ADVISORY_NAMESPACE = 4201
_END_OF_DAY = time(23, 59, 59, 999000)


def day_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """UTC [00:00:00.000 of start, 23:59:59.999 of end]."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end, _END_OF_DAY, tzinfo=timezone.utc)
    if lower > upper:
        raise ValidationError("Invalid date range")
    return lower, upper


@dataclass
class Valuation:
    quantity: int
    amount: Optional[Decimal]


class InventoryLedger:
    def __init__(
        self,
        session: AsyncSession,
        locks: KeyedLock = product_locks,
        price_basis: Optional[PriceBasis] = None,
    ):
        self.session = session
        self.locks = locks
        self.price_basis = price_basis or PriceBasis(settings.valuation_price_basis)

    # ------------------------------------------------------------------ writes

    async def record_inventory(
        self,
        product_id: int,
        product_name: str,
        quantity: int,
        unit_price: Decimal = Decimal("0"),
        created_at: Optional[datetime] = None,
    ) -> InventoryRecord:
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")
        if unit_price < 0:
            raise ValidationError("unit_price must be >= 0")
        if await self.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found")

        record = InventoryRecord(
            product_id=product_id,
            product_name=product_name,
            quantity=quantity,
            unit_price=unit_price,
        )
        if created_at is not None:
            record.created_at = created_at
        self.session.add(record)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info("Inventory batch recorded", product_id=product_id, quantity=quantity, unit_price=str(unit_price))
        return record

    async def place_distributor_order(
        self,
        distributor_id: int,
        distributor_name: str,
        product_id: int,
        product_name: str,
        quantity: int,
    ) -> DistributorOrderRecord:
        """Check availability and append the dispatch as one serialised step per product."""
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")

        async with self.locks.hold(product_id):
            try:
                await self._lock_product(product_id)
                if await self.session.get(Distributor, distributor_id) is None:
                    raise NotFoundError("Distributor not found")
                if await self.session.get(Product, product_id) is None:
                    raise NotFoundError("Product not found")
                available = await self.available_quantity(product_id)
                if available is None:
                    raise NotFoundError("Product not found in inventory")
                if available < quantity:
                    raise InsufficientStockError(product_id, quantity, available)

                record = DistributorOrderRecord(
                    distributor_id=distributor_id,
                    distributor_name=distributor_name,
                    product_id=product_id,
                    product_name=product_name,
                    quantity=quantity,
                )
                self.session.add(record)
                # Commit before the lock is released so the next holder sees this row
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            "Distributor order placed",
            product_id=product_id,
            distributor_id=distributor_id,
            quantity=quantity,
            remaining=available - quantity,
        )
        return record

    async def _lock_product(self, product_id: int) -> None:
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(:ns, :key)"),
                {"ns": _ADVISORY_NAMESPACE, "key": product_id},
            )

    # ------------------------------------------------------------------- reads

    async def available_quantity(self, product_id: int) -> Optional[int]:
        """Incoming minus outgoing; None when the product never had an inventory batch.

        The result can be negative if dispatches were written without going through
        place_distributor_order; it is reported as-is.
        """
        incoming = await self.session.scalar(
            select(func.sum(InventoryRecord.quantity)).where(InventoryRecord.product_id == product_id)
        )
        if incoming is None:
            return None

        outgoing = await self.session.scalar(
            select(func.coalesce(func.sum(DistributorOrderRecord.quantity), 0))
            .where(DistributorOrderRecord.product_id == product_id)
        )
        return int(incoming) - int(outgoing or 0)

    async def current_unit_price(self, product_id: int, as_of: Optional[datetime] = None) -> Optional[Decimal]:
        """Unit price of the most recently created batch (optionally created at or before `as_of`)."""
        stmt = select(InventoryRecord.unit_price).where(InventoryRecord.product_id == product_id)
        if as_of is not None:
            stmt = stmt.where(InventoryRecord.created_at <= as_of)
        stmt = stmt.order_by(InventoryRecord.created_at.desc(), InventoryRecord.id.desc()).limit(1)
        price = await self.session.scalar(stmt)
        return Decimal(price) if price is not None else None

    async def quantity_dispatched_in_range(self, distributor_id: int, product_id: int, start: date, end: date) -> int:
        lower, upper = day_bounds(start, end)
        total = await self.session.scalar(
            select(func.coalesce(func.sum(DistributorOrderRecord.quantity), 0)).where(
                DistributorOrderRecord.distributor_id == distributor_id,
                DistributorOrderRecord.product_id == product_id,
                DistributorOrderRecord.dispatch_date >= lower,
                DistributorOrderRecord.dispatch_date <= upper,
            )
        )
        return int(total or 0)

    async def dispatch_valuation(
        self,
        distributor_id: int,
        product_id: int,
        start: date,
        end: date,
        price_basis: Optional[PriceBasis] = None,
    ) -> Valuation:
        """Quantity dispatched to a distributor for one product, and its value.

        With the LATEST basis the whole window is valued at today's unit price,
        not the price in effect when each dispatch happened.
        """
        basis = price_basis or self.price_basis
        if basis == PriceBasis.LATEST:
            quantity = await self.quantity_dispatched_in_range(distributor_id, product_id, start, end)
            price = await self.current_unit_price(product_id)
            return Valuation(quantity=quantity, amount=quantity * price if price is not None else None)

        records = await self._dispatches(distributor_id, start, end, product_id=product_id)
        quantity = 0
        amount: Optional[Decimal] = None
        for rec in records:
            quantity += int(rec.quantity)
            price = await self.current_unit_price(product_id, as_of=rec.dispatch_date)
            if price is not None:
                amount = (amount or Decimal("0")) + rec.quantity * price
        return Valuation(quantity=quantity, amount=amount)

    async def total_value_for_distributor(
        self,
        distributor_id: int,
        start: date,
        end: date,
        price_basis: Optional[PriceBasis] = None,
    ) -> Valuation:
        """Every dispatch in range, each line priced with its own product's unit price."""
        basis = price_basis or self.price_basis
        records = await self._dispatches(distributor_id, start, end)
        if not records:
            raise NotFoundError("No orders found for this distributor")

        latest_prices: Dict[int, Optional[Decimal]] = {}
        quantity = 0
        amount = Decimal("0")
        for rec in records:
            quantity += int(rec.quantity)
            if basis == PriceBasis.AT_DISPATCH:
                price = await self.current_unit_price(rec.product_id, as_of=rec.dispatch_date)
            else:
                if rec.product_id not in latest_prices:
                    latest_prices[rec.product_id] = await self.current_unit_price(rec.product_id)
                price = latest_prices[rec.product_id]
            if price is not None:
                amount += rec.quantity * price
        return Valuation(quantity=quantity, amount=amount)

    async def _dispatches(
        self,
        distributor_id: int,
        start: date,
        end: date,
        product_id: Optional[int] = None,
    ) -> List[DistributorOrderRecord]:
        lower, upper = day_bounds(start, end)
        stmt = select(DistributorOrderRecord).where(
            DistributorOrderRecord.distributor_id == distributor_id,
            DistributorOrderRecord.dispatch_date >= lower,
            DistributorOrderRecord.dispatch_date <= upper,
        )
        if product_id is not None:
            stmt = stmt.where(DistributorOrderRecord.product_id == product_id)
        res = await self.session.execute(stmt.order_by(DistributorOrderRecord.dispatch_date.asc(), DistributorOrderRecord.id.asc()))
        return list(res.scalars().all())

    async def export(self) -> Tuple[List[InventoryRecord], List[DistributorOrderRecord]]:
        inv = await self.session.execute(select(InventoryRecord).order_by(InventoryRecord.id.asc()))
        out = await self.session.execute(select(DistributorOrderRecord).order_by(DistributorOrderRecord.id.asc()))
        return list(inv.scalars().all()), list(out.scalars().all())
