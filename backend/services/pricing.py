"""
Retail order pricing and persistence.

A line's unit price is the variant's price when the line names a variant of
that product with a price, otherwise the product's retailer price. Variant
prices are keyed by (product_id, variant_id): a variant id that belongs to a
different product is ignored and the line falls back to its own product's
price, rather than taking the foreign variant's price. Lines whose
catalog rows are missing price at 0 unless strict pricing is on, in which case
the order is rejected before anything is written.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.errors import InternalError, NotFoundError, ValidationError
from db.database import (
    Distributor,
    Order,
    OrderItem,
    PartialPayment,
    Product,
    ProductVariant,
    Salesperson,
    Shopkeeper,
)
from schemas.orders import OrderCreate, OrderStatus, OrderUpdate, PaymentTerm
from services.queue import NotificationQueue

logger = structlog.get_logger(__name__)


class OrderLine(Protocol):
    product_id: int
    variant_id: Optional[int]
    quantity: int


ProductPrices = Dict[int, Decimal]
# (product_id, variant_id) -> price
VariantPrices = Dict[Tuple[int, int], Decimal]


@dataclass
class PricedLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int
    unit_price: Decimal
    priced: bool

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class PricedOrder:
    lines: List[PricedLine]
    total_amount: Decimal

    @property
    def unpriced(self) -> List[PricedLine]:
        return [ln for ln in self.lines if not ln.priced]


def resolve_line_price(
    product_id: int,
    variant_id: Optional[int],
    product_prices: ProductPrices,
    variant_prices: VariantPrices,
) -> Optional[Decimal]:
    if variant_id is not None:
        price = variant_prices.get((product_id, variant_id))
        if price is not None:
            return price
    return product_prices.get(product_id)


def items_snapshot(items: Iterable[OrderLine]) -> List[dict]:
    return [
        {"product_id": it.product_id, "variant_id": it.variant_id, "quantity": int(it.quantity)}
        for it in items
    ]


class OrderPricingService:
    def __init__(
        self,
        session: AsyncSession,
        queue: Optional[NotificationQueue] = None,
        strict_pricing: Optional[bool] = None,
    ):
        self.session = session
        self.queue = queue or NotificationQueue(session)
        self.strict_pricing = settings.strict_pricing if strict_pricing is None else strict_pricing

    async def load_price_maps(self, lines: List[OrderLine]) -> Tuple[ProductPrices, VariantPrices]:
        product_ids = sorted({ln.product_id for ln in lines})
        variant_ids = sorted({ln.variant_id for ln in lines if ln.variant_id is not None})

        product_prices: ProductPrices = {}
        res = await self.session.execute(
            select(Product.id, Product.retailer_price).where(Product.id.in_(product_ids))
        )
        for pid, price in res.all():
            if price is not None:
                product_prices[pid] = Decimal(price)

        variant_prices: VariantPrices = {}
        if variant_ids:
            res = await self.session.execute(
                select(ProductVariant.id, ProductVariant.product_id, ProductVariant.price).where(
                    ProductVariant.id.in_(variant_ids),
                    ProductVariant.product_id.in_(product_ids),
                )
            )
            for vid, pid, price in res.all():
                if price is not None:
                    variant_prices[(pid, vid)] = Decimal(price)

        return product_prices, variant_prices

    async def price_lines(self, lines: List[OrderLine]) -> PricedOrder:
        product_prices, variant_prices = await self.load_price_maps(lines)

        priced: List[PricedLine] = []
        total = Decimal("0")
        for ln in lines:
            price = resolve_line_price(ln.product_id, ln.variant_id, product_prices, variant_prices)
            line = PricedLine(
                product_id=ln.product_id,
                variant_id=ln.variant_id,
                quantity=int(ln.quantity),
                unit_price=price if price is not None else Decimal("0"),
                priced=price is not None,
            )
            total += line.amount
            priced.append(line)

        result = PricedOrder(lines=priced, total_amount=total)
        if result.unpriced:
            missing = ", ".join(
                f"product {ln.product_id}" + (f" / variant {ln.variant_id}" if ln.variant_id is not None else "")
                for ln in result.unpriced
            )
            if self.strict_pricing:
                raise ValidationError(f"Unknown catalog entries: {missing}")
            logger.warning("Order lines priced at 0", missing=missing)
        return result

    async def create_order(self, payload: OrderCreate) -> Order:
        await self._ensure_parties(payload.shopkeeper_id, payload.distributor_id, payload.salesperson_id)
        priced = await self.price_lines(payload.items)

        order = Order(
            shopkeeper_id=payload.shopkeeper_id,
            distributor_id=payload.distributor_id,
            salesperson_id=payload.salesperson_id,
            delivery_date=payload.delivery_date,
            delivery_slot=payload.delivery_slot,
            payment_term=payload.payment_term.value,
            order_note=payload.order_note,
            total_amount=priced.total_amount,
            status=OrderStatus.PENDING.value,
        )
        order.items = [
            OrderItem(product_id=it.product_id, variant_id=it.variant_id, quantity=it.quantity)
            for it in payload.items
        ]
        if payload.payment_term == PaymentTerm.PARTIAL and payload.partial_payment is not None:
            order.partial_payment = PartialPayment(
                initial_amount=payload.partial_payment.initial_amount,
                remaining_amount=payload.partial_payment.remaining_amount,
                due_date=payload.partial_payment.due_date,
                payment_status="PENDING",
            )

        self.session.add(order)
        try:
            await self.session.flush()
            self.queue.enqueue(order.id, is_order_update_mail=False)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.exception("Order creation failed", shopkeeper_id=payload.shopkeeper_id)
            raise InternalError("Failed to create order") from e

        logger.info("Order created", order_id=order.id, total_amount=str(order.total_amount), lines=len(priced.lines))
        return order

    async def update_order(self, order_id: int, payload: OrderUpdate) -> Order:
        data = payload.model_dump(exclude_unset=True)
        if not data:
            raise ValidationError("No changes supplied")

        order = await self._load_for_update(order_id)
        if order is None:
            raise NotFoundError("Order not found")

        term = payload.payment_term.value if payload.payment_term is not None else order.payment_term
        if payload.partial_payment is not None and term != PaymentTerm.PARTIAL.value:
            raise ValidationError("partial_payment requires payment_term PARTIAL")

        priced = None
        if payload.items is not None:
            priced = await self.price_lines(payload.items)

        previous_items = items_snapshot(order.items)
        try:
            if priced is not None:
                order.items.clear()
                await self.session.flush()
                for it in payload.items:
                    order.items.append(OrderItem(product_id=it.product_id, variant_id=it.variant_id, quantity=it.quantity))
                order.total_amount = priced.total_amount

            if "delivery_date" in data and payload.delivery_date is not None:
                order.delivery_date = payload.delivery_date
            if "delivery_slot" in data:
                order.delivery_slot = payload.delivery_slot
            if "order_note" in data:
                order.order_note = payload.order_note
            if payload.status is not None:
                order.status = payload.status.value
            order.payment_term = term

            self._apply_partial_payment(order, payload)

            await self.session.flush()
            self.queue.enqueue(order.id, is_order_update_mail=True, previous_items=previous_items)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.exception("Order update failed", order_id=order_id)
            raise InternalError("Failed to update order") from e

        logger.info("Order updated", order_id=order.id, total_amount=str(order.total_amount), fields=sorted(data))
        return order

    def _apply_partial_payment(self, order: Order, payload: OrderUpdate) -> None:
        if order.payment_term != PaymentTerm.PARTIAL.value:
            # Leaving PARTIAL drops the instalment row with it
            order.partial_payment = None
            return
        pp = payload.partial_payment
        if pp is None:
            return
        if order.partial_payment is None:
            order.partial_payment = PartialPayment(
                initial_amount=pp.initial_amount,
                remaining_amount=pp.remaining_amount,
                due_date=pp.due_date,
                payment_status="PENDING",
            )
        else:
            order.partial_payment.initial_amount = pp.initial_amount
            order.partial_payment.remaining_amount = pp.remaining_amount
            order.partial_payment.due_date = pp.due_date

    async def _load_for_update(self, order_id: int) -> Optional[Order]:
        res = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.partial_payment))
            .where(Order.id == order_id)
        )
        return res.scalar_one_or_none()

    async def _ensure_parties(self, shopkeeper_id: int, distributor_id: int, salesperson_id: int) -> None:
        for model, pk, label in (
            (Shopkeeper, shopkeeper_id, "Shopkeeper"),
            (Distributor, distributor_id, "Distributor"),
            (Salesperson, salesperson_id, "Salesperson"),
        ):
            if await self.session.get(model, pk) is None:
                raise NotFoundError(f"{label} not found")
