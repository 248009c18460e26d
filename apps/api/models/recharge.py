"""Recharge model: immutable credit to a member's balance."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String
from sqlalchemy.sql import func
import uuid

from database import Base
from models.account import MONEY


class Recharge(Base):
    """Immutable recharge ledger row."""

    __tablename__ = "recharges"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (Index("ix_recharges_member_created", "member_id", "created_at"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, ForeignKey("members.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    recharge_type = Column(String, nullable=False, default="credit")
    notes = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
