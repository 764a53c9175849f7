from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from ..database import Base, utcnow


class DistributorOrderRecord(Base):
    __tablename__ = "distributor_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    distributor_id = Column(Integer, ForeignKey("distributors.id", ondelete="RESTRICT"), nullable=False, index=True)
    distributor_name = Column(String, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    product_name = Column(String, nullable=False)

    quantity = Column(Integer, nullable=False)
    dispatch_date = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "distributor_id": self.distributor_id,
            "distributor_name": self.distributor_name,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "dispatch_date": self.dispatch_date,
        }
