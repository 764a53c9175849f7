from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from core.errors import InternalError, NotFoundError, ValidationError
from db.database import NotificationJob, Order, PartialPayment
from schemas.orders import OrderCreate, OrderUpdate
from services.pricing import OrderPricingService, resolve_line_price
from services.queue import NotificationQueue


def _payload(items, **overrides):
    data = {
        "shopkeeper_id": 5,
        "distributor_id": 7,
        "salesperson_id": 3,
        "delivery_date": date(2024, 6, 1),
        "delivery_slot": "Morning",
        "payment_term": "FULL",
        "items": items,
    }
    data.update(overrides)
    return OrderCreate(**data)


async def _job_count(db, order_id=None):
    stmt = select(func.count()).select_from(NotificationJob)
    if order_id is not None:
        stmt = stmt.where(NotificationJob.order_id == order_id)
    return await db.scalar(stmt)


def test_resolve_line_price_falls_back_to_product():
    products = {1: Decimal("100")}
    variants = {(1, 10): Decimal("180")}
    assert resolve_line_price(1, 10, products, variants) == Decimal("180")
    assert resolve_line_price(1, None, products, variants) == Decimal("100")
    assert resolve_line_price(1, 99, products, variants) == Decimal("100")
    # variant 10 belongs to product 1, not 2
    assert resolve_line_price(2, 10, products, variants) is None


class TestCreateOrder:
    async def test_total_from_retailer_price(self, db, catalog):
        order = await OrderPricingService(db).create_order(_payload([{"product_id": 1, "quantity": 2}]))
        assert order.total_amount == Decimal("200.00")
        assert order.status == "PENDING"

    async def test_variant_price_overrides_product_price(self, db, catalog):
        order = await OrderPricingService(db).create_order(
            _payload([
                {"product_id": 1, "variant_id": 10, "quantity": 1},
                # variant without a price falls back to the product
                {"product_id": 2, "variant_id": 11, "quantity": 2},
            ])
        )
        assert order.total_amount == Decimal("280.00")

    async def test_variant_of_another_product_falls_back_to_own_price(self, db, catalog):
        # variant 10 (180.00) belongs to product 1
        order = await OrderPricingService(db).create_order(
            _payload([{"product_id": 2, "variant_id": 10, "quantity": 2}])
        )
        assert order.total_amount == Decimal("100.00")

    async def test_unknown_product_priced_at_zero_when_lenient(self, db, catalog):
        order = await OrderPricingService(db, strict_pricing=False).create_order(
            _payload([{"product_id": 1, "quantity": 1}, {"product_id": 999, "quantity": 4}])
        )
        assert order.total_amount == Decimal("100.00")

    async def test_unknown_product_rejected_when_strict(self, db, catalog):
        with pytest.raises(ValidationError, match="product 999"):
            await OrderPricingService(db, strict_pricing=True).create_order(
                _payload([{"product_id": 999, "quantity": 1}])
            )
        assert await db.scalar(select(func.count()).select_from(Order)) == 0

    async def test_missing_party(self, db, catalog):
        with pytest.raises(NotFoundError, match="Shopkeeper not found"):
            await OrderPricingService(db).create_order(_payload([{"product_id": 1, "quantity": 1}], shopkeeper_id=404))

    async def test_exactly_one_job_per_order(self, db, catalog):
        order = await OrderPricingService(db).create_order(_payload([{"product_id": 1, "quantity": 1}]))
        jobs = (await db.execute(select(NotificationJob).where(NotificationJob.order_id == order.id))).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].is_order_update_mail is False
        assert jobs[0].status == "ENQUEUED"

    async def test_partial_payment_saved_only_for_partial_term(self, db, catalog):
        pp = {"initial_amount": "40", "remaining_amount": "60", "due_date": "2024-07-01"}
        svc = OrderPricingService(db)
        partial = await svc.create_order(
            _payload([{"product_id": 1, "quantity": 1}], payment_term="PARTIAL", partial_payment=pp)
        )
        full = await svc.create_order(_payload([{"product_id": 1, "quantity": 1}], partial_payment=pp))

        rows = (await db.execute(select(PartialPayment))).scalars().all()
        assert [r.order_id for r in rows] == [partial.id]
        assert rows[0].payment_status == "PENDING"
        assert full.id != partial.id

    async def test_failed_enqueue_rolls_back_the_order(self, db, catalog):
        class BrokenQueue(NotificationQueue):
            def enqueue(self, *args, **kwargs):
                raise RuntimeError("queue down")

        svc = OrderPricingService(db, queue=BrokenQueue(db))
        with pytest.raises(InternalError):
            await svc.create_order(_payload([{"product_id": 1, "quantity": 1}]))
        assert await db.scalar(select(func.count()).select_from(Order)) == 0
        assert await _job_count(db) == 0

    def test_empty_items_rejected_by_schema(self):
        with pytest.raises(ValueError):
            _payload([])


class TestUpdateOrder:
    async def test_recomputes_total_and_enqueues_update_mail(self, db, catalog):
        svc = OrderPricingService(db)
        order = await svc.create_order(_payload([{"product_id": 1, "quantity": 2}]))

        updated = await svc.update_order(
            order.id,
            OrderUpdate(items=[{"product_id": 1, "quantity": 1}, {"product_id": 2, "quantity": 3}], status="CONFIRMED"),
        )
        assert updated.total_amount == Decimal("250.00")
        assert updated.status == "CONFIRMED"

        jobs = (
            await db.execute(
                select(NotificationJob).where(NotificationJob.order_id == order.id).order_by(NotificationJob.id)
            )
        ).scalars().all()
        assert [j.is_order_update_mail for j in jobs] == [False, True]
        assert jobs[1].previous_items == [{"product_id": 1, "variant_id": None, "quantity": 2}]

    async def test_field_only_edit_keeps_total(self, db, catalog):
        svc = OrderPricingService(db)
        order = await svc.create_order(_payload([{"product_id": 1, "quantity": 2}]))
        updated = await svc.update_order(order.id, OrderUpdate(order_note="ring the bell"))
        assert updated.total_amount == Decimal("200.00")
        assert updated.order_note == "ring the bell"
        assert await _job_count(db, order.id) == 2

    async def test_leaving_partial_drops_instalment(self, db, catalog):
        pp = {"initial_amount": "40", "remaining_amount": "60", "due_date": "2024-07-01"}
        svc = OrderPricingService(db)
        order = await svc.create_order(
            _payload([{"product_id": 1, "quantity": 1}], payment_term="PARTIAL", partial_payment=pp)
        )
        await svc.update_order(order.id, OrderUpdate(payment_term="CREDIT"))
        assert await db.scalar(select(func.count()).select_from(PartialPayment)) == 0

    async def test_partial_payment_needs_partial_term(self, db, catalog):
        svc = OrderPricingService(db)
        order = await svc.create_order(_payload([{"product_id": 1, "quantity": 1}]))
        with pytest.raises(ValidationError):
            await svc.update_order(
                order.id,
                OrderUpdate(partial_payment={"initial_amount": "1", "remaining_amount": "1", "due_date": "2024-07-01"}),
            )

    async def test_empty_update_and_missing_order(self, db, catalog):
        svc = OrderPricingService(db)
        with pytest.raises(ValidationError, match="No changes supplied"):
            await svc.update_order(1, OrderUpdate())
        with pytest.raises(NotFoundError):
            await svc.update_order(404, OrderUpdate(order_note="x"))
