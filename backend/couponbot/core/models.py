"""
ORM models for persistence.

WHAT: SQLAlchemy models for conversations, deal outcomes and coupon images
WHY: Resume negotiations after restart and keep an audit trail of every deal
HOW: Declarative models; the full conversation lives in a JSON snapshot column,
     with indexed scalar columns for lookups
"""

from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, Enum as SQLEnum, Index, Integer, JSON, String, Text,
)

from .database import Base
from ..models.conversation import ConversationState, CouponType


class ConversationRecord(Base):
    """
    Conversation table - latest snapshot of each negotiation.

    WHAT: One row per conversation, overwritten on every mutation
    WHY: resume_all() rebuilds the engine's store from these rows
    HOW: Scalar columns for filtering plus a JSON snapshot of the pydantic model
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True)
    counterparty_id = Column(String(100), nullable=False)
    counterparty_name = Column(String(100), nullable=False)
    category = Column(SQLEnum(CouponType), nullable=False)
    state = Column(SQLEnum(ConversationState), nullable=False)
    snapshot = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_conversation_state", "state"),
        Index("idx_conversation_counterparty", "counterparty_id"),
    )

    def __repr__(self):
        return f"<ConversationRecord(id={self.id}, counterparty={self.counterparty_name}, state={self.state})>"


class DealRecord(Base):
    """
    Deal table - one row per terminal transition.

    WHAT: Success or failure outcome with refund flags
    WHY: History of purchases and failures for the operator
    HOW: Append-only rows written by record_outcome()
    """
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False)  # success or failed
    category = Column(SQLEnum(CouponType), nullable=False)
    counterparty_id = Column(String(100), nullable=False)
    counterparty_name = Column(String(100), nullable=False)
    price = Column(Integer, nullable=False)
    sub_category = Column(String(50), nullable=True)
    payment_identifier = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    refund_requested = Column(Boolean, nullable=False, default=False)
    refund_received = Column(Boolean, nullable=False, default=False)
    image_reference = Column(String(300), nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index("idx_deal_conversation", "conversation_id"),
    )

    def __repr__(self):
        return f"<DealRecord(conversation={self.conversation_id}, status={self.status})>"


class CouponImage(Base):
    """Saved deliverable files."""
    __tablename__ = "coupon_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(SQLEnum(CouponType), nullable=False)
    counterparty_name = Column(String(100), nullable=False)
    file_path = Column(String(300), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def __repr__(self):
        return f"<CouponImage(id={self.id}, category={self.category}, path={self.file_path})>"
