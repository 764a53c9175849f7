from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from ..database import Base, utcnow


class InventoryRecord(Base):
    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    product_name = Column(String, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)

    # Latest created_at per product is the "current" unit price
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "created_at": self.created_at,
        }
