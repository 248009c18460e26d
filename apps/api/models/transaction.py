"""Transaction model: immutable merchant debit against a member."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base
from models.account import MONEY

COMPLETED = "completed"


class Transaction(Base):
    """Debit row; only ``completed`` rows count towards the balance."""

    __tablename__ = "transactions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_transactions_member_created", "member_id", "created_at"),
        Index("ix_transactions_store_created", "store_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, ForeignKey("members.id"), nullable=False)
    card_id = Column(String, ForeignKey("cards.id"), nullable=True)
    store_id = Column(String, ForeignKey("stores.id"), nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(String, nullable=False, default=COMPLETED)
    transaction_type = Column(String, nullable=False, default="debit")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    store = relationship("Store")
    card = relationship("Card")
