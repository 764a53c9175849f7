from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.database import (
    get_async_session,
    Order as OrderModel,
    OrderItem as OrderItemModel,
)
from schemas.orders import (
    OrderCreate,
    OrderCreated,
    OrderItemRead,
    OrderRead,
    OrderStatus,
    OrderSummary,
    OrderUpdate,
    PartialPaymentRead,
)
from services.pricing import OrderPricingService

router = APIRouter()


def get_pricing_service(db: AsyncSession = Depends(get_async_session)) -> OrderPricingService:
    return OrderPricingService(db)


def _summary(o: OrderModel) -> OrderSummary:
    return OrderSummary(
        id=o.id,
        shopkeeper_id=o.shopkeeper_id,
        distributor_id=o.distributor_id,
        salesperson_id=o.salesperson_id,
        delivery_date=o.delivery_date,
        delivery_slot=o.delivery_slot,
        payment_term=o.payment_term,
        order_note=o.order_note,
        total_amount=o.total_amount,
        status=o.status,
    )


def _serialize_order(o: OrderModel) -> OrderRead:
    items_out: List[OrderItemRead] = []
    for it in (o.items or []):
        p = getattr(it, "product", None)
        v = getattr(it, "variant", None)
        items_out.append(
            OrderItemRead(
                id=it.id,
                product_id=it.product_id,
                product_name=getattr(p, "name", None) if p else None,
                variant_id=it.variant_id,
                variant=v.label if v else None,
                quantity=it.quantity,
            )
        )
    pp = getattr(o, "partial_payment", None)
    return OrderRead(
        **_summary(o).model_dump(),
        order_date=o.order_date,
        shopkeeper_name=getattr(o.shopkeeper, "name", None) if o.shopkeeper else None,
        distributor_name=getattr(o.distributor, "name", None) if o.distributor else None,
        salesperson_name=getattr(o.salesperson, "name", None) if o.salesperson else None,
        items=items_out,
        partial_payment=(
            PartialPaymentRead(
                initial_amount=pp.initial_amount,
                remaining_amount=pp.remaining_amount,
                due_date=pp.due_date,
                payment_status=pp.payment_status,
            )
            if pp
            else None
        ),
    )


def _order_query():
    return (
        select(OrderModel)
        .options(
            selectinload(OrderModel.shopkeeper),
            selectinload(OrderModel.distributor),
            selectinload(OrderModel.salesperson),
            selectinload(OrderModel.partial_payment),
            selectinload(OrderModel.items).selectinload(OrderItemModel.product),
            selectinload(OrderModel.items).selectinload(OrderItemModel.variant),
        )
        .execution_options(populate_existing=True)
    )


async def _load_order(db: AsyncSession, order_id: int) -> OrderModel:
    res = await db.execute(_order_query().where(OrderModel.id == order_id))
    o = res.scalar_one_or_none()
    if not o:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return o


@router.post("/", response_model=OrderCreated, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    service: OrderPricingService = Depends(get_pricing_service),
):
    order = await service.create_order(payload)
    return OrderCreated(order=_summary(order))


@router.get("/", response_model=List[OrderRead])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    salesperson_id: Optional[int] = None,
    shopkeeper_id: Optional[int] = None,
    distributor_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = _order_query().order_by(OrderModel.order_date.desc(), OrderModel.id.desc())
    if status_filter:
        stmt = stmt.where(OrderModel.status == status_filter.value)
    if salesperson_id is not None:
        stmt = stmt.where(OrderModel.salesperson_id == salesperson_id)
    if shopkeeper_id is not None:
        stmt = stmt.where(OrderModel.shopkeeper_id == shopkeeper_id)
    if distributor_id is not None:
        stmt = stmt.where(OrderModel.distributor_id == distributor_id)
    res = await db.execute(stmt.limit(limit))
    return [_serialize_order(o) for o in res.scalars().all()]


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(order_id: int, db: AsyncSession = Depends(get_async_session)):
    return _serialize_order(await _load_order(db, order_id))


@router.patch("/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: int,
    payload: OrderUpdate,
    service: OrderPricingService = Depends(get_pricing_service),
):
    await service.update_order(order_id, payload)
    return _serialize_order(await _load_order(service.session, order_id))
