"""Card model: one issued identity card bound to a member."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Card(Base):
    """A numbered card; at most one per member may be active at a time."""

    __tablename__ = "cards"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        # Store-level arbiter for the single-active-card rule.
        Index(
            "uq_cards_member_active",
            "member_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, ForeignKey("members.id"), nullable=False, index=True)
    card_number = Column(Integer, unique=True, nullable=False)
    photo_url = Column(String, nullable=True)
    qr_data = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    member = relationship("Member", back_populates="cards")
