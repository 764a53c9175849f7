from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class PaymentTerm(str, Enum):
    FULL = "FULL"
    CREDIT = "CREDIT"
    PARTIAL = "PARTIAL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISPATCHED = "DISPATCHED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderItemCreate(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(gt=0)


class PartialPaymentCreate(BaseModel):
    initial_amount: Decimal = Field(ge=0)
    remaining_amount: Decimal = Field(ge=0)
    due_date: date


class OrderCreate(BaseModel):
    shopkeeper_id: int
    distributor_id: int
    salesperson_id: int
    delivery_date: date
    delivery_slot: Optional[str] = None
    payment_term: PaymentTerm
    order_note: Optional[str] = None
    items: List[OrderItemCreate] = Field(min_length=1)
    partial_payment: Optional[PartialPaymentCreate] = None


class OrderUpdate(BaseModel):
    delivery_date: Optional[date] = None
    delivery_slot: Optional[str] = None
    payment_term: Optional[PaymentTerm] = None
    order_note: Optional[str] = None
    status: Optional[OrderStatus] = None
    items: Optional[List[OrderItemCreate]] = Field(default=None, min_length=1)
    partial_payment: Optional[PartialPaymentCreate] = None


class PartialPaymentRead(BaseModel):
    initial_amount: Decimal
    remaining_amount: Decimal
    due_date: date
    payment_status: str


class OrderItemRead(BaseModel):
    id: Optional[int] = None
    product_id: int
    product_name: Optional[str] = None
    variant_id: Optional[int] = None
    variant: Optional[str] = None
    quantity: int


class OrderSummary(BaseModel):
    id: int
    shopkeeper_id: int
    distributor_id: int
    salesperson_id: int
    delivery_date: date
    delivery_slot: Optional[str] = None
    payment_term: str
    order_note: Optional[str] = None
    total_amount: Decimal
    status: str


class OrderCreated(BaseModel):
    message: str = "Order created successfully"
    order: OrderSummary


class OrderRead(OrderSummary):
    order_date: datetime
    shopkeeper_name: Optional[str] = None
    distributor_name: Optional[str] = None
    salesperson_name: Optional[str] = None
    items: List[OrderItemRead]
    partial_payment: Optional[PartialPaymentRead] = None
