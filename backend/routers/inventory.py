from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_async_session
from schemas.inventory import (
    AvailableQuantityRead,
    DispatchQuantityQuery,
    DispatchValuationRead,
    DistributorOrderCreate,
    DistributorOrderPlaced,
    DistributorOrderRead,
    DistributorValuationQuery,
    DistributorValuationRead,
    InventoryRecordCreate,
    InventoryRecordRead,
    LedgerExport,
    UnitPriceRead,
)
from services.valuation import InventoryLedger

router = APIRouter()


def get_inventory_ledger(db: AsyncSession = Depends(get_async_session)) -> InventoryLedger:
    return InventoryLedger(db)


@router.post("/", response_model=InventoryRecordRead, status_code=status.HTTP_201_CREATED)
async def record_inventory(
    payload: InventoryRecordCreate,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    rec = await ledger.record_inventory(
        product_id=payload.product_id,
        product_name=payload.product_name,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
    )
    return InventoryRecordRead(**rec.to_schema)


@router.get("/exports", response_model=LedgerExport)
async def export_ledgers(ledger: InventoryLedger = Depends(get_inventory_ledger)):
    incoming, outgoing = await ledger.export()
    return LedgerExport(
        product_inventory=[InventoryRecordRead(**r.to_schema) for r in incoming],
        distributor_orders=[DistributorOrderRead(**r.to_schema) for r in outgoing],
    )


@router.get("/{product_id}/quantity", response_model=AvailableQuantityRead)
async def get_available_quantity(product_id: int, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    available = await ledger.available_quantity(product_id)
    if available is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such product in the inventory")
    return AvailableQuantityRead(product_id=product_id, available_quantity=available)


@router.get("/{product_id}/unit-price", response_model=UnitPriceRead)
async def get_unit_price(product_id: int, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    price = await ledger.current_unit_price(product_id)
    if price is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No unit price found for the product")
    return UnitPriceRead(product_id=product_id, unit_price=price)


@router.post("/distributor-orders", response_model=DistributorOrderPlaced, status_code=status.HTTP_201_CREATED)
async def place_distributor_order(
    payload: DistributorOrderCreate,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    rec = await ledger.place_distributor_order(
        distributor_id=payload.distributor_id,
        distributor_name=payload.distributor_name,
        product_id=payload.product_id,
        product_name=payload.product_name,
        quantity=payload.quantity,
    )
    return DistributorOrderPlaced(order=DistributorOrderRead(**rec.to_schema))


@router.post("/distributor-orders/quantity", response_model=DispatchValuationRead)
async def dispatched_quantity(
    payload: DispatchQuantityQuery,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    val = await ledger.dispatch_valuation(
        payload.distributor_id,
        payload.product_id,
        payload.start_date,
        payload.end_date,
        price_basis=payload.price_basis,
    )
    return DispatchValuationRead(final_quantity=val.quantity, final_amount=val.amount)


@router.post("/distributor-orders/total", response_model=DistributorValuationRead)
async def distributor_total(
    payload: DistributorValuationQuery,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    val = await ledger.total_value_for_distributor(
        payload.distributor_id,
        payload.start_date,
        payload.end_date,
        price_basis=payload.price_basis,
    )
    return DistributorValuationRead(
        distributor_id=payload.distributor_id,
        final_amount=val.amount,
        final_quantity=val.quantity,
    )
