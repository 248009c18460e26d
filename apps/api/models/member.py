"""Member model: the card-holding individual."""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Member(Base):
    """Identity keyed by the stable external GR number."""

    __tablename__ = "members"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    gr_number = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    group_name = Column(String, nullable=True)  # class / section
    guardian_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    cards = relationship("Card", back_populates="member", order_by="Card.created_at.desc()")
    account = relationship("Account", back_populates="member", uselist=False)
