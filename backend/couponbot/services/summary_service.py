"""
Operator-facing summaries.

WHAT: Format the structured messages sent to the operator
WHY: Every terminal transition produces exactly one summary; checkpoints need a clear prompt
HOW: Plain text templates over Conversation fields
"""

from datetime import datetime
from typing import Optional

from ..models.conversation import Conversation


def _stamp(value: Optional[datetime]) -> str:
    return value.strftime("%d %b %Y %I:%M %p") if value else "-"


def format_purchase_request(conversation: Conversation) -> str:
    """Checkpoint 1 prompt."""
    lines = [
        "COUPON PURCHASE CONFIRMATION",
        "",
        f"Seller: {conversation.counterparty_name}",
        f"Type: {conversation.category.value.upper()}",
    ]
    if conversation.sub_category:
        lines.append(f"Mess: {conversation.sub_category}")
    lines += [
        f"Amount: Rs.{conversation.price}",
        f"UPI: {conversation.payment_identifier}",
        "",
        'Reply "ok" to proceed with payment or "no" to skip.',
    ]
    return "\n".join(lines)


def format_payment_request(conversation: Conversation) -> str:
    """Checkpoint 2 prompt."""
    return (
        f"Pay Rs.{conversation.price} to {conversation.payment_identifier} "
        f"({conversation.counterparty_name}).\n\n"
        'Reply "paid" once the payment has gone through.'
    )


def format_success_caption(conversation: Conversation) -> str:
    """
    Caption forwarded with the deliverable.

    Args:
        conversation: Completed conversation

    Returns:
        Multi-line caption text
    """
    lines = [
        "COUPON PURCHASED!",
        "",
        f"Type: {conversation.category.value.upper()}",
        f"Seller: {conversation.counterparty_name}",
    ]
    if conversation.sub_category:
        lines.append(f"Mess: {conversation.sub_category}")
    lines += [
        f"Amount: Rs.{conversation.price}",
        f"Started: {_stamp(conversation.created_at)}",
        f"Completed: {_stamp(conversation.completed_at)}",
    ]
    return "\n".join(lines)


def format_failure_summary(conversation: Conversation) -> str:
    """
    Structured failure summary.

    Includes refund status whenever a refund was requested (payment had
    been asserted before the counterparty cancelled).
    """
    lines = [
        "DEAL FAILED",
        "",
        f"Type: {conversation.category.value.upper()}",
        f"Seller: {conversation.counterparty_name}",
        f"Reason: {conversation.failure_reason}",
        f"Started: {_stamp(conversation.created_at)}",
        f"Ended: {_stamp(conversation.completed_at)}",
    ]
    if conversation.refund_requested:
        status = "received" if conversation.refund_received else "NOT received"
        lines.append(f"Refund: {status} (Rs.{conversation.price})")
    return "\n".join(lines)


def format_refund_requested(conversation: Conversation) -> str:
    return (
        "SELLER CANCELLED AFTER PAYMENT!\n\n"
        f"Seller: {conversation.counterparty_name}\n"
        f"Amount: Rs.{conversation.price}\n\n"
        "Asked seller for refund. Tracking refund status..."
    )


def format_refund_received(conversation: Conversation) -> str:
    return (
        "REFUND RECEIVED!\n\n"
        f"Seller: {conversation.counterparty_name}\n"
        f"Amount: Rs.{conversation.price}\n\n"
        "Refund screenshot received. Deal closed."
    )


def format_follow_up_exhausted(conversation: Conversation) -> str:
    return (
        f"Deliverable not received after {conversation.follow_up_count} attempts.\n\n"
        f"Seller: {conversation.counterparty_name}\n"
        f"Type: {conversation.category.value.upper()}\n"
        f"Conversation: {conversation.id}\n\n"
        "Paid but no coupon. Resolve manually (complete or fail)."
    )
