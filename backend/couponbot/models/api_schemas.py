"""
Pydantic API schemas.

WHAT: Request and response models for the operator and inbound endpoints
WHY: Validate bridge payloads and keep the engine's models out of the wire format
HOW: Pydantic v2 models with field validators
"""

import base64
import binascii
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .conversation import ChatMessage, Conversation, CouponType


# ========== Inbound (chat bridge -> engine) ==========

class InboundMessageRequest(BaseModel):
    """A direct message from a counterparty, optionally carrying an image."""
    counterparty_id: str = Field(..., min_length=1, max_length=100)
    text: str = Field(default="", max_length=4000)
    attachment_base64: Optional[str] = Field(default=None, description="Base64-encoded image bytes")
    from_operator: bool = Field(default=False, description="Message typed by the operator in this chat")

    @field_validator("attachment_base64")
    @classmethod
    def validate_attachment(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("attachment_base64 is not valid base64")
        return v

    def attachment_bytes(self) -> Optional[bytes]:
        return base64.b64decode(self.attachment_base64) if self.attachment_base64 else None


class InboundOfferRequest(BaseModel):
    """A group-channel message to run through offer detection."""
    sender_id: str = Field(..., min_length=1, max_length=100)
    sender_name: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1, max_length=4000)
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    message_id: Optional[str] = None


class OperatorReplyRequest(BaseModel):
    """Operator's reply in the notification chat (ok / no / paid ...)."""
    text: str = Field(..., min_length=1, max_length=200)


class AcceptedResponse(BaseModel):
    queued: bool = True


# ========== Operator controls ==========

class CheckpointDecisionRequest(BaseModel):
    value: bool


class CheckpointDecisionResponse(BaseModel):
    conversation_id: str
    kind: str
    resolved: bool


class FailRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ResultResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class PreferencesRequest(BaseModel):
    category: CouponType
    sub_categories: List[str] = Field(default_factory=list)
    paused: Optional[bool] = None


# ========== Views ==========

class ConversationView(BaseModel):
    """Dashboard row for one conversation."""
    id: str
    counterparty_id: str
    counterparty_name: str
    category: CouponType
    sub_category: Optional[str] = None
    price: int
    payment_identifier: Optional[str] = None
    state: str
    failure_reason: Optional[str] = None
    payment_confirmed: bool
    follow_up_count: int
    follow_ups_exhausted: bool
    refund_requested: bool
    refund_received: bool
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationView":
        return cls(
            **conversation.model_dump(exclude={"messages", "state"}),
            state=conversation.state.value,
        )


class ConversationListResponse(BaseModel):
    conversations: List[ConversationView]
    total: int


class MessagesResponse(BaseModel):
    conversation_id: str
    messages: List[ChatMessage]


class OutboxMessageView(BaseModel):
    recipient: str
    text: str
    kind: Literal["text", "attachment", "alert"]
    created_at: datetime


class OutboxResponse(BaseModel):
    messages: List[OutboxMessageView]

