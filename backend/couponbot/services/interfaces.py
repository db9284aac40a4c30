"""
Collaborator protocols consumed by the negotiation engine.

WHAT: Abstract interfaces for transport, NLU, phrasing, eligibility and storage
WHY: Decouple the engine from the chat client, classifier and database
HOW: typing.Protocol classes; the engine only depends on these shapes
"""

from datetime import datetime
from typing import Optional, Protocol

from ..models.conversation import Conversation, ConversationState, CouponType, OutcomeRecord
from ..models.nlu import Detection, OfferClassification, ReplyAnalysis


class Transport(Protocol):
    """Chat transport to counterparties and the operator."""

    async def send(self, counterparty_id: str, text: str) -> None:
        ...

    async def send_attachment(self, counterparty_id: str, data: bytes, caption: str) -> None:
        ...

    async def fetch_recent_attachments(
        self,
        counterparty_id: str,
        limit: int,
        since: datetime
    ) -> list[bytes]:
        """Attachments from the counterparty sent after `since`, newest first."""
        ...

    async def notify_operator(self, text: str) -> None:
        ...

    async def notify_operator_attachment(self, data: bytes, caption: str) -> None:
        ...

    async def request_out_of_band_alert(self, operator_id: str) -> None:
        """Out-of-band nudge (e.g. a phone call) for an undecided checkpoint."""
        ...


class NLU(Protocol):
    """Natural-language interpretation of inbound messages."""

    async def classify_offer(self, text: str) -> OfferClassification:
        ...

    async def classify_counterparty_reply(self, text: str) -> ReplyAnalysis:
        ...

    async def detect_withdrawal(self, text: str) -> Detection:
        ...

    async def detect_refund_confirmation(self, text: str) -> Detection:
        ...

    async def detect_user_withdrawal(self, text: str) -> bool:
        ...

    async def extract_sub_category(self, text: str) -> Optional[str]:
        ...


class Phraser(Protocol):
    """Wording of outgoing counterparty messages."""

    def opening(self, category: CouponType, sub_category: Optional[str], channel_name: Optional[str]) -> str: ...
    def ask_sub_category(self) -> str: ...
    def ask_payment_identifier(self) -> str: ...
    def wait_acknowledgment(self) -> str: ...
    def not_available_ack(self) -> str: ...
    def price_decline(self, price: int) -> str: ...
    def category_decline(self, accepted: list[str], offered: str) -> str: ...
    def early_image_ack(self, state: ConversationState) -> str: ...
    def payment_imminent(self) -> str: ...
    def payment_confirmation(self, payment_identifier: str, amount: int) -> str: ...
    def payment_done_with_thanks(self) -> str: ...
    def thanks(self) -> str: ...
    def withdrawal(self) -> str: ...
    def coupon_follow_up(self, count: int) -> str: ...
    def coupon_reminder(self) -> str: ...
    def cancel_probe(self) -> str: ...
    def persuade(self, paid: bool) -> str: ...
    def accept_cancellation(self) -> str: ...
    def refund_request(self, amount: int) -> str: ...
    def refund_reminder(self) -> str: ...
    def ask_refund_screenshot(self) -> str: ...
    def refund_thanks(self) -> str: ...


class EligibilityOracle(Protocol):
    """Daily eligibility predicate and purchase sink."""

    def can_start_category(self, category: CouponType) -> bool:
        ...

    def accepted_sub_categories(self, category: CouponType) -> Optional[list[str]]:
        """None means any sub-category is accepted."""
        ...

    def mark_fulfilled(self, category: CouponType, conversation_id: str) -> None:
        ...


class Storage(Protocol):
    """Persistence for conversations, outcomes and deliverables."""

    def persist(self, conversation: Conversation) -> None:
        ...

    def record_outcome(self, record: OutcomeRecord) -> None:
        ...

    def save_attachment(self, category: CouponType, data: bytes, counterparty_name: str) -> str:
        """Store a deliverable and return a reference to it."""
        ...
