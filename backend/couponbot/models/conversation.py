"""
Conversation domain models.

WHAT: Core data structures for one coupon negotiation and its inputs/outputs
WHY: Single typed entity owned by the engine, snapshotted to storage as JSON
HOW: Pydantic v2 models with str-Enum state fields
"""

import enum
from datetime import datetime
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class CouponType(str, enum.Enum):
    """Offer categories (meal slots)."""
    LUNCH = "lunch"
    DINNER = "dinner"


class ConversationState(str, enum.Enum):
    """Negotiation FSM states."""
    INITIATING_CONTACT = "initiating_contact"
    AWAITING_MESS_INFO = "awaiting_mess_info"
    AWAITING_PAYMENT_INFO = "awaiting_payment_info"
    PAYMENT_PENDING = "payment_pending"
    AWAITING_COUPON = "awaiting_coupon"
    AWAITING_REFUND = "awaiting_refund"
    AWAITING_REFUND_SCREENSHOT = "awaiting_refund_screenshot"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConversationState.COMPLETED, ConversationState.FAILED)


class CheckpointKind(str, enum.Enum):
    """Human confirmation checkpoints."""
    PURCHASE = "purchase"
    PAYMENT = "payment"


class FailureReason:
    """Reason strings recorded on terminal failure."""
    OFFER_WITHDRAWN = "offer withdrawn"
    PRICE_EXCEEDED = "price exceeded"
    CATEGORY_MISMATCH = "category mismatch"
    OPERATOR_DECLINED = "operator declined"
    OPERATOR_TIMEOUT = "operator confirmation timed out"
    PAYMENT_NOT_CONFIRMED = "payment not confirmed"
    COUNTERPARTY_CANCELLED = "counterparty cancelled"
    REFUND_RECEIVED = "cancelled post-payment - refund received"
    INACTIVITY_TIMEOUT = "inactivity timeout"
    SUPERSEDED = "superseded on resume"
    OPERATOR_CANCELLED = "operator cancelled"
    MANUAL = "manually failed by operator"


class ChatMessage(BaseModel):
    """One entry of a conversation's message log."""

    direction: Literal["incoming", "outgoing"]
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)
    has_attachment: bool = False


class Conversation(BaseModel):
    """
    One negotiation instance with a single counterparty.

    Mutated only by the NegotiationEngine. Escalation counters for the
    cancellation sub-protocol and the deliverable follow-ups live here rather
    than in side tables, so finalization clears them with the entity.
    """

    # Identity
    id: str = Field(default_factory=lambda: str(uuid4()))
    counterparty_id: str
    counterparty_name: str

    # Classification
    category: CouponType
    price: int = 70
    payment_identifier: Optional[str] = None
    sub_category: Optional[str] = None

    # Provenance
    origin_channel_id: Optional[str] = None
    origin_channel_name: Optional[str] = None
    origin_message_id: Optional[str] = None
    original_text: str = ""

    # State
    state: ConversationState = ConversationState.INITIATING_CONTACT
    failure_reason: Optional[str] = None
    payment_confirmed: bool = False

    # Deliverable follow-up escalation
    follow_up_count: int = 0
    last_follow_up_at: Optional[datetime] = None
    follow_ups_exhausted: bool = False

    # Cancellation escalation (0 = none, 1 = probed, 2 = persuaded)
    cancel_escalation: int = Field(default=0, ge=0, le=2)

    # Refund sub-flow
    refund_requested: bool = False
    refund_received: bool = False
    refund_screenshot_received: bool = False

    messages: list[ChatMessage] = Field(default_factory=list)

    # Lifecycle
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def touch(self) -> None:
        self.updated_at = datetime.now()


class Offer(BaseModel):
    """An accepted-for-consideration offer detected in a group channel."""

    counterparty_id: str
    counterparty_name: str
    category: CouponType
    text: str = ""
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    message_id: Optional[str] = None


class GroupMessage(BaseModel):
    """Raw group-channel message, before offer classification."""

    sender_id: str
    sender_name: str
    text: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    message_id: Optional[str] = None


class Result(BaseModel):
    """Outcome of a manual override."""

    success: bool
    error: Optional[str] = None


class OutcomeRecord(BaseModel):
    """History entry written once per terminal transition."""

    conversation_id: str
    status: Literal["success", "failed"]
    category: CouponType
    counterparty_id: str
    counterparty_name: str
    price: int
    sub_category: Optional[str] = None
    payment_identifier: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_requested: bool = False
    refund_received: bool = False
    image_reference: Optional[str] = None
    recorded_at: datetime = Field(default_factory=datetime.now)
