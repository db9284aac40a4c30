"""
Structured NLU results.

WHAT: Closed result types for every classification the engine consumes
WHY: Engine branching stays exhaustive; no free-form analysis dicts
HOW: Frozen dataclasses with explicitly optional fields
"""

from dataclasses import dataclass
from typing import Optional

from .conversation import CouponType


@dataclass(frozen=True)
class OfferClassification:
    """Result of classifying a group message as an offer."""
    is_offer: bool
    category: Optional[CouponType] = None
    confidence: float = 0.0


@dataclass(frozen=True)
class ReplyAnalysis:
    """
    Interpretation of one counterparty reply.

    None on availability/agreement means "not stated", which is distinct
    from an explicit False.
    """
    availability: Optional[bool] = None
    price: Optional[int] = None
    payment_identifier: Optional[str] = None
    phone_number: Optional[str] = None
    use_same_number: bool = False
    agreement: Optional[bool] = None
    has_deliverable: bool = False
    asks_to_wait: bool = False
    is_acknowledgment: bool = False
    asks_payment_status: bool = False
    needs_clarification: bool = False
    clarification_text: Optional[str] = None


@dataclass(frozen=True)
class Detection:
    """Boolean signal with a confidence score."""
    flag: bool
    confidence: float = 0.0
