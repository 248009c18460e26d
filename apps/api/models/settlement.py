"""Settlement request state machine rows and their audit trail."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base
from models.account import MONEY

REQUESTED = "requested"
PENDING = "pending"
COMPLETED = "completed"


class Settlement(Base):
    """A merchant payout request: requested -> pending -> completed."""

    __tablename__ = "settlements"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (Index("ix_settlements_store_created", "store_id", "created_at"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column(String, ForeignKey("stores.id"), nullable=False)
    total_transaction_amount = Column(MONEY, nullable=False)
    settled_amount = Column(MONEY, nullable=False, default=Decimal("0.00"), server_default="0")
    pending_amount = Column(MONEY, nullable=False)  # still owed on this request
    status = Column(String, nullable=False, default=REQUESTED)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    store = relationship("Store", back_populates="settlements")
    logs = relationship("SettlementLog", back_populates="settlement", order_by="SettlementLog.created_at")


class SettlementLog(Base):
    """Immutable audit entry per settlement action."""

    __tablename__ = "settlement_logs"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    settlement_id = Column(String, ForeignKey("settlements.id"), nullable=False, index=True)
    action_type = Column(String, nullable=False)  # create, amend, payment
    amount = Column(MONEY, nullable=False)
    notes = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    settlement = relationship("Settlement", back_populates="logs")
