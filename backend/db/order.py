from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from .database import Base, utcnow


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shopkeeper_id = Column(Integer, ForeignKey("shopkeepers.id", ondelete="RESTRICT"), nullable=False, index=True)
    distributor_id = Column(Integer, ForeignKey("distributors.id", ondelete="RESTRICT"), nullable=False, index=True)
    salesperson_id = Column(Integer, ForeignKey("salespersons.id", ondelete="RESTRICT"), nullable=False, index=True)

    order_date = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    delivery_date = Column(Date, nullable=False)
    delivery_slot = Column(String, nullable=True)
    payment_term = Column(Text, nullable=False)  # FULL|CREDIT|PARTIAL
    order_note = Column(Text, nullable=True)

    # Stored once at creation (and on edit); never recomputed from later prices
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Text, nullable=False, default="PENDING", index=True)  # PENDING|CONFIRMED|DISPATCHED|DELIVERED|CANCELLED

    shopkeeper = relationship("Shopkeeper")
    distributor = relationship("Distributor")
    salesperson = relationship("Salesperson")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    partial_payment = relationship("PartialPayment", back_populates="order", uselist=False, cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")


class PartialPayment(Base):
    __tablename__ = "partial_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)

    initial_amount = Column(Numeric(12, 2), nullable=False)
    remaining_amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    payment_status = Column(Text, nullable=False, default="PENDING")  # PENDING|PAID|OVERDUE

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="partial_payment")
