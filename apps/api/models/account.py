"""Account model: materialised balance and daily-spend state for a member."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base

MONEY = Numeric(12, 2)


class Account(Base):
    """Spendable balance, one-to-one with a member.

    ``balance`` always equals ``carried_balance`` plus the member's recharges
    minus completed debits; ``carried_balance`` holds the net of ledger rows
    removed by the retention purge.
    """

    __tablename__ = "accounts"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, ForeignKey("members.id"), unique=True, nullable=False)
    balance = Column(MONEY, nullable=False, default=Decimal("0.00"), server_default="0")
    carried_balance = Column(MONEY, nullable=False, default=Decimal("0.00"), server_default="0")
    daily_limit = Column(MONEY, nullable=True)  # null or 0 = unlimited
    daily_spent = Column(MONEY, nullable=False, default=Decimal("0.00"), server_default="0")
    last_spent_reset = Column(Date, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    member = relationship("Member", back_populates="account")
