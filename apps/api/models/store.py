"""Store (merchant) and its running settlement balance."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base
from models.account import MONEY


class Store(Base):
    """Affiliated merchant."""

    __tablename__ = "stores"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_name = Column(String, unique=True, nullable=False)
    store_type = Column(String, nullable=True)
    owner_name = Column(String, nullable=True)
    mobile_number = Column(String, unique=True, nullable=True)
    email = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    settlement_account = relationship("StoreSettlement", back_populates="store", uselist=False)
    settlements = relationship("Settlement", back_populates="store")


class StoreSettlement(Base):
    """Unearmarked merchant earnings (not yet requested for payout)."""

    __tablename__ = "store_settlements"
    __mapper_args__ = {"eager_defaults": True}

    store_id = Column(String, ForeignKey("stores.id"), primary_key=True)
    pending_amount = Column(MONEY, nullable=False, default=Decimal("0.00"), server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    store = relationship("Store", back_populates="settlement_account")
