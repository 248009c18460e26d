"""DailyLimitHistory model."""

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.sql import func
import uuid

from database import Base
from models.account import MONEY


class DailyLimitHistory(Base):
    """Immutable record of a daily limit change."""

    __tablename__ = "daily_limit_history"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, ForeignKey("members.id"), nullable=False, index=True)
    old_limit = Column(MONEY, nullable=True)
    new_limit = Column(MONEY, nullable=True)
    changed_by = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
