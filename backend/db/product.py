from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from .database import Base


class Product(Base):
    """Catalog product. Read-only price source for the core."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    sku_id = Column(String, nullable=True, unique=True)

    retailer_price = Column(Numeric(12, 2), nullable=False, default=0)
    distributor_price = Column(Numeric(12, 2), nullable=False, default=0)
    mrp = Column(Numeric(12, 2), nullable=False, default=0)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    variant_name = Column(String, nullable=True)   # e.g. "Size"
    variant_value = Column(String, nullable=True)  # e.g. "500g"
    price = Column(Numeric(12, 2), nullable=True)
    stock_quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="variants")

    @property
    def label(self) -> str:
        if self.variant_name and self.variant_value:
            return f"{self.variant_name}: {self.variant_value}"
        return self.variant_value or self.variant_name or ""
