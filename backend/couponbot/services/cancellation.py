"""
Counterparty cancellation sub-protocol.

WHAT: Three-step escalation (probe, persuade, accept) when the counterparty backs out
WHY: A first "sorry" is often negotiable; after payment, the exit is a refund
HOW: Escalation counter on the Conversation; the accept step forks on payment_confirmed
"""

from typing import TYPE_CHECKING

from ..models.conversation import Conversation, ConversationState, FailureReason
from ..models.nlu import ReplyAnalysis
from .summary_service import format_refund_requested
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..core.negotiation_engine import NegotiationEngine

logger = get_logger(__name__)

ESCALATION_CEILING = 2


class CancellationSubProtocol:
    """Intercepts withdrawal signals in every pre-terminal negotiating state."""

    APPLICABLE_STATES = frozenset({
        ConversationState.INITIATING_CONTACT,
        ConversationState.AWAITING_MESS_INFO,
        ConversationState.AWAITING_PAYMENT_INFO,
        ConversationState.PAYMENT_PENDING,
        ConversationState.AWAITING_COUPON,
    })

    def __init__(self, host: "NegotiationEngine", threshold: float):
        self._host = host
        self.threshold = threshold

    async def intercept(self, conversation: Conversation, text: str) -> bool:
        """
        Handle a possible withdrawal.

        Returns:
            True if the message was consumed by the sub-protocol
        """
        if conversation.state not in self.APPLICABLE_STATES or not text.strip():
            return False

        signal = await self._host.nlu.detect_withdrawal(text)
        if not (signal.flag and signal.confidence > self.threshold):
            return False

        logger.info(
            f"Withdrawal signal from {conversation.counterparty_name} "
            f"(confidence={signal.confidence:.2f}, level={conversation.cancel_escalation})"
        )
        await self._escalate(conversation)
        return True

    def observe_reply(self, conversation: Conversation, analysis: ReplyAnalysis) -> None:
        """Renewed agreement or a deliverable claim clears the escalation."""
        if conversation.cancel_escalation == 0:
            return
        if analysis.agreement is True or analysis.availability is True or analysis.has_deliverable:
            logger.info(f"Counterparty back on track, escalation cleared for {conversation.id}")
            conversation.cancel_escalation = 0

    async def _escalate(self, conversation: Conversation) -> None:
        host = self._host
        level = conversation.cancel_escalation

        if level == 0:
            await host.send_to_counterparty(conversation, host.phraser.cancel_probe())
            conversation.cancel_escalation = 1
            conversation.touch()
            host.save(conversation)
            return

        if level < ESCALATION_CEILING:
            await host.send_to_counterparty(
                conversation, host.phraser.persuade(paid=conversation.payment_confirmed)
            )
            conversation.cancel_escalation = level + 1
            conversation.touch()
            host.save(conversation)
            return

        conversation.cancel_escalation = 0
        if not conversation.payment_confirmed:
            await host.send_to_counterparty(
                conversation, host.phraser.accept_cancellation(), essential=True
            )
            await host.fail(conversation, FailureReason.COUNTERPARTY_CANCELLED)
            return

        await self._request_refund(conversation)

    async def _request_refund(self, conversation: Conversation) -> None:
        host = self._host
        await host.send_to_counterparty(
            conversation, host.phraser.refund_request(conversation.price), essential=True
        )
        host.stop_timers(conversation.id)
        conversation.refund_requested = True
        host.transition(conversation, ConversationState.AWAITING_REFUND)
        logger.warning(f"Counterparty cancelled after payment, refund requested ({conversation.id})")

        await host.notify_operator(format_refund_requested(conversation))
        await host.request_operator_alert()
