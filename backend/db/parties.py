"""Accounts the core reads for order ownership and mail recipients."""

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .database import Base


class Salesperson(Base):
    __tablename__ = "salespersons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone_number = Column(String, nullable=True)

    shopkeepers = relationship("Shopkeeper", back_populates="salesperson")


class Distributor(Base):
    __tablename__ = "distributors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone_number = Column(String, nullable=True)
    address = Column(String, nullable=True)


class Shopkeeper(Base):
    __tablename__ = "shopkeepers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    owner_name = Column(String, nullable=True)
    contact_number = Column(String, nullable=True)
    email = Column(String, nullable=True)  # optional; shopkeepers without email get no mail
    preferred_delivery_slot = Column(String, nullable=True)
    salesperson_id = Column(Integer, ForeignKey("salespersons.id", ondelete="SET NULL"), nullable=True, index=True)

    salesperson = relationship("Salesperson", back_populates="shopkeepers")
