from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PriceBasis(str, Enum):
    # Unit price of the most recent inventory batch, whatever the dispatch date
    LATEST = "LATEST"
    # Unit price of the most recent batch created at or before each dispatch
    AT_DISPATCH = "AT_DISPATCH"


class InventoryRecordCreate(BaseModel):
    product_id: int
    product_name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator("product_name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class InventoryRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    created_at: datetime


class DistributorOrderCreate(BaseModel):
    distributor_name: str
    distributor_id: int
    product_id: int
    product_name: str
    quantity: int = Field(gt=0)

    @field_validator("distributor_name", "product_name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class DistributorOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    distributor_id: int
    distributor_name: str
    product_id: int
    product_name: str
    quantity: int
    dispatch_date: datetime


class DistributorOrderPlaced(BaseModel):
    message: str = "Order placed successfully"
    order: DistributorOrderRead


class AvailableQuantityRead(BaseModel):
    product_id: int
    available_quantity: int


class UnitPriceRead(BaseModel):
    product_id: int
    unit_price: Decimal


class _DateRange(BaseModel):
    start_date: date
    end_date: date
    price_basis: Optional[PriceBasis] = None


class DispatchQuantityQuery(_DateRange):
    distributor_id: int
    product_id: int


class DistributorValuationQuery(_DateRange):
    distributor_id: int


class DispatchValuationRead(BaseModel):
    final_quantity: int
    # None when the product has never had an inventory batch
    final_amount: Optional[Decimal] = None


class DistributorValuationRead(BaseModel):
    distributor_id: int
    final_amount: Decimal
    final_quantity: int


class LedgerExport(BaseModel):
    product_inventory: List[InventoryRecordRead]
    distributor_orders: List[DistributorOrderRead]
