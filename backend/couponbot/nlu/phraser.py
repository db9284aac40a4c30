"""
Template phrasing for counterparty messages.

WHAT: Short, casual outgoing messages for every negotiation step
WHY: Messages must read like a student texting, not a bot
HOW: Fixed templates; follow-up wording escalates with the reminder count
"""

from typing import Optional

from ..models.conversation import ConversationState, CouponType


class TemplatePhraser:
    """Default Phraser implementation."""

    def opening(self, category: CouponType, sub_category: Optional[str], channel_name: Optional[str]) -> str:
        where = f" in {channel_name}" if channel_name else ""
        if sub_category:
            return f"hey, saw your message{where} about the {sub_category} {category.value} coupon, still available?"
        return f"hey, saw your message{where} about the {category.value} coupon, still available?"

    def ask_sub_category(self) -> str:
        return "btw which mess is it for?"

    def ask_payment_identifier(self) -> str:
        return "great, what's your UPI id? I'll send the money"

    def wait_acknowledgment(self) -> str:
        return "sure, no rush"

    def not_available_ack(self) -> str:
        return "ah okay, no worries"

    def price_decline(self, price: int) -> str:
        return f"ah that's a bit much for me, I can only do {price}. thanks anyway"

    def category_decline(self, accepted: list[str], offered: str) -> str:
        return f"oh it's {offered}? I was looking for {' or '.join(accepted)}, sorry. thanks though"

    def early_image_ack(self, state: ConversationState) -> str:
        if state == ConversationState.PAYMENT_PENDING:
            return "Got it, thanks! Just completing payment."
        return "Got it, thanks! Just confirming payment."

    def payment_imminent(self) -> str:
        return "paying now, one min"

    def payment_confirmation(self, payment_identifier: str, amount: int) -> str:
        return f"sent {amount} to {payment_identifier}, please send the coupon"

    def payment_done_with_thanks(self) -> str:
        return "payment done, thanks for the coupon!"

    def thanks(self) -> str:
        return "got it, thanks!"

    def withdrawal(self) -> str:
        return "hey sorry, my friend just got me one so I don't need it anymore. thanks though"

    def coupon_follow_up(self, count: int) -> str:
        if count <= 0:
            return "hey, could you send the coupon now?"
        if count == 1:
            return "just a reminder, please send the coupon when you can"
        if count == 2:
            return "still waiting for the coupon, could you send it?"
        return "bro I already paid, please send the coupon"

    def coupon_reminder(self) -> str:
        return "cool, just send the coupon screenshot whenever you can"

    def cancel_probe(self) -> str:
        return "oh, what happened?"

    def persuade(self, paid: bool) -> str:
        if paid:
            return "come on, I already paid for it. please send it"
        return "come on, I really need it today. please?"

    def accept_cancellation(self) -> str:
        return "okay no worries, thanks anyway"

    def refund_request(self, amount: int) -> str:
        return f"alright, please send back the {amount} then"

    def refund_reminder(self) -> str:
        return "did you send the refund?"

    def ask_refund_screenshot(self) -> str:
        return "can you share the payment screenshot?"

    def refund_thanks(self) -> str:
        return "got it, thanks"
