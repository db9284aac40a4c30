"""
Negotiation engine.

WHAT: Per-counterparty state machine that buys one meal coupon at a time
WHY: Offers, replies, operator decisions and timers all race; one owner must
     serialize them and keep the single-active-conversation invariant
HOW: State handlers routed by Conversation.state; operator checkpoints are
     futures in HumanConfirmationGateway whose continuations run on the
     EventDispatcher; follow-ups and cancellations are delegated subsystems
"""

import asyncio
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from .config import Settings, settings as default_settings
from ..models.conversation import (
    ChatMessage,
    CheckpointKind,
    Conversation,
    ConversationState,
    FailureReason,
    GroupMessage,
    Offer,
    OutcomeRecord,
    Result,
)
from ..models.nlu import ReplyAnalysis
from ..nlu.phraser import TemplatePhraser
from ..services.active_slot import ActiveSlot
from ..services.cancellation import CancellationSubProtocol
from ..services.confirmation_gateway import CheckpointResolution, HumanConfirmationGateway
from ..services.dispatcher import EventDispatcher
from ..services.follow_up import FollowUpTimerSubsystem
from ..services.interfaces import NLU, EligibilityOracle, Phraser, Storage, Transport
from ..services.reconciliation_buffer import ImageReconciliationBuffer
from ..services.summary_service import (
    format_failure_summary,
    format_payment_request,
    format_purchase_request,
    format_refund_received,
    format_success_caption,
)
from ..services.visibility_filter import filter_visible
from ..utils.exceptions import ConversationAlreadyTerminalException, ConversationNotFoundException
from ..utils.history_truncation import truncate_history
from ..utils.logger import get_logger

logger = get_logger(__name__)

# States in which an image is held for later instead of being taken as the deliverable
EARLY_IMAGE_STATES = frozenset({
    ConversationState.INITIATING_CONTACT,
    ConversationState.AWAITING_MESS_INFO,
    ConversationState.AWAITING_PAYMENT_INFO,
    ConversationState.PAYMENT_PENDING,
})

APPROVE_REPLIES = {"ok", "okay", "yes", "y"}
DECLINE_REPLIES = {"no", "n", "cancel"}
PAID_REPLIES = {"paid", "done", "sent"}


def phone_from_counterparty_id(counterparty_id: str) -> Optional[str]:
    """
    Derive a 10-digit mobile number from a chat id like "919876543210@c.us".

    Returns:
        The number without country code, or None
    """
    digits = re.sub(r"\D", "", counterparty_id.split("@")[0])
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    return digits if len(digits) == 10 else None


class NegotiationEngine:
    """
    Owner of every Conversation and of the active slot.

    Collaborator failures are logged and swallowed; no exception crosses
    the public entry points except ConversationNotFoundException for
    id-addressed lookups.
    """

    def __init__(
        self,
        transport: Transport,
        nlu: NLU,
        eligibility: EligibilityOracle,
        storage: Storage,
        phraser: Optional[Phraser] = None,
        config: Settings = default_settings,
        on_failed: Optional[Callable[[str, str], Any]] = None,
    ):
        self.transport = transport
        self.nlu = nlu
        self.eligibility = eligibility
        self.storage = storage
        self.phraser = phraser or TemplatePhraser()
        self.config = config
        self.on_failed = on_failed

        self.conversations: dict[str, Conversation] = {}
        self.dispatcher = EventDispatcher()
        self.active_slot = ActiveSlot()
        self.buffer = ImageReconciliationBuffer()
        self.gateway = HumanConfirmationGateway(self.dispatcher)
        self.follow_ups = FollowUpTimerSubsystem(
            self, self.dispatcher, config.FOLLOW_UP_INTERVAL_SECONDS, config.MAX_FOLLOW_UPS
        )
        self.cancellation = CancellationSubProtocol(self, config.WITHDRAWAL_CONFIDENCE_THRESHOLD)

        self._handlers = {
            ConversationState.INITIATING_CONTACT: self._handle_awaiting_payment_info,
            ConversationState.AWAITING_MESS_INFO: self._handle_awaiting_mess_info,
            ConversationState.AWAITING_PAYMENT_INFO: self._handle_awaiting_payment_info,
            ConversationState.PAYMENT_PENDING: self._handle_payment_pending,
            ConversationState.AWAITING_COUPON: self._handle_awaiting_coupon,
            ConversationState.AWAITING_REFUND: self._handle_awaiting_refund,
            ConversationState.AWAITING_REFUND_SCREENSHOT: self._handle_awaiting_refund_screenshot,
        }

    # ------------------------------------------------------------------
    # Offer intake
    # ------------------------------------------------------------------

    async def handle_group_message(self, message: GroupMessage) -> Optional[Conversation]:
        """Classify a group-channel message and accept it if it is an offer."""
        try:
            classification = await self.nlu.classify_offer(message.text)
        except Exception as e:
            logger.error(f"Offer classification failed: {e}")
            return None

        if not classification.is_offer or classification.category is None:
            return None

        logger.info(
            f"Offer detected from {message.sender_name}: {classification.category.value} "
            f"(confidence={classification.confidence:.2f})"
        )
        return await self.accept_offer(Offer(
            counterparty_id=message.sender_id,
            counterparty_name=message.sender_name,
            category=classification.category,
            text=message.text,
            channel_id=message.channel_id,
            channel_name=message.channel_name,
            message_id=message.message_id,
        ))

    async def accept_offer(self, offer: Offer) -> Optional[Conversation]:
        """
        Start (or resume) a negotiation for an offer.

        WHAT: Eligibility, blocking and duplicate checks, then first contact
        WHY: One negotiation at a time, never two for the same counterparty and slot
        HOW: Claim the active slot atomically with creating the conversation

        Args:
            offer: Detected offer

        Returns:
            The conversation, or None if ineligible, blocked, duplicate or the
            slot is held by another conversation
        """
        category = offer.category
        if not self._safely(self.eligibility.can_start_category, category):
            logger.info(f"Skipping {category.value} offer from {offer.counterparty_name}: slot not eligible")
            return None

        exempt = self.config.is_exempt(offer.counterparty_id)
        if not exempt and self._failed_today(offer.counterparty_id):
            logger.info(f"Skipping offer from {offer.counterparty_name}: failed deal earlier today")
            return None

        recent = self._recent_conversation(offer.counterparty_id, category)
        if recent is not None:
            if recent.state == ConversationState.COMPLETED and not exempt:
                logger.info(f"Skipping offer from {offer.counterparty_name}: already bought from them")
                return None
            if not recent.is_terminal:
                if not self.active_slot.claim(recent.id):
                    logger.info(f"Skipping offer from {offer.counterparty_name}: another negotiation is active")
                    return None
                logger.info(f"Resuming recent conversation {recent.id} instead of duplicating")
                await self._reissue_prompt(recent)
                return recent

        if self._open_conversation_for(offer.counterparty_id) is not None:
            logger.info(f"Skipping offer from {offer.counterparty_name}: open conversation exists")
            return None

        conversation = Conversation(
            counterparty_id=offer.counterparty_id,
            counterparty_name=offer.counterparty_name,
            category=category,
            price=self.config.FIXED_PRICE,
            origin_channel_id=offer.channel_id,
            origin_channel_name=offer.channel_name,
            origin_message_id=offer.message_id,
            original_text=offer.text,
        )
        if not self.active_slot.claim(conversation.id):
            logger.info(
                f"Skipping offer from {offer.counterparty_name}: "
                f"negotiation {self.active_slot.holder} is active"
            )
            return None

        self.conversations[conversation.id] = conversation
        self.save(conversation)
        logger.info(f"Conversation {conversation.id} created for {offer.counterparty_name} ({category.value})")

        try:
            await self._initiate_contact(conversation)
        except Exception:
            logger.exception(f"Initial contact failed for {conversation.id}")
        return conversation

    async def _initiate_contact(self, conversation: Conversation) -> None:
        sub_category = await self.nlu.extract_sub_category(conversation.original_text)
        channel = conversation.origin_channel_name

        if sub_category:
            conversation.sub_category = sub_category
            if not self._sub_category_accepted(conversation):
                await self._decline_category(conversation)
                return
            await self.send_to_counterparty(
                conversation, self.phraser.opening(conversation.category, sub_category, channel)
            )
            self._transition(conversation, ConversationState.AWAITING_PAYMENT_INFO)
            return

        await self.send_to_counterparty(conversation, self.phraser.opening(conversation.category, None, channel))
        await self.send_to_counterparty(conversation, self.phraser.ask_sub_category())
        self._transition(conversation, ConversationState.AWAITING_MESS_INFO)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    async def handle_counterparty_message(
        self,
        counterparty_id: str,
        text: str,
        attachment: Optional[bytes] = None,
    ) -> None:
        """
        Route a counterparty message to the handler for the conversation's state.

        Unknown counterparties are ignored (logged only).
        """
        conversation = self._open_conversation_for(counterparty_id)
        if conversation is None:
            logger.debug(f"No open conversation for {counterparty_id}, ignoring message")
            return

        try:
            await self._dispatch(conversation, text or "", attachment)
        except ConversationAlreadyTerminalException:
            logger.info(f"Conversation {conversation.id} was finalized while handling a message")
        except Exception:
            logger.exception(f"Handler failed for conversation {conversation.id} in {conversation.state.value}")

    async def _dispatch(self, conversation: Conversation, text: str, attachment: Optional[bytes]) -> None:
        has_attachment = attachment is not None
        self._record(conversation, "incoming", text or ("[Image]" if has_attachment else ""), has_attachment)
        conversation.touch()
        logger.info(
            f"Message from {conversation.counterparty_name} in {conversation.state.value}"
            f"{' with attachment' if has_attachment else ''}: {text[:100]!r}"
        )

        if has_attachment:
            self.buffer.record_seen(conversation.id, attachment)
            if conversation.state in EARLY_IMAGE_STATES:
                self.buffer.hold_early(conversation.id, attachment)
                await self.send_to_counterparty(conversation, self.phraser.early_image_ack(conversation.state))
                self.save(conversation)
                return

        handler = self._handlers[conversation.state]
        await handler(conversation, text, attachment)
        self.save(conversation)

    async def _preamble(
        self,
        conversation: Conversation,
        text: str,
        ignore_acknowledgments: bool,
    ) -> Optional[ReplyAnalysis]:
        """Shared first steps; returns None when the message was fully handled."""
        analysis = await self.nlu.classify_counterparty_reply(text)
        if ignore_acknowledgments and analysis.is_acknowledgment:
            logger.debug(f"Short acknowledgment from {conversation.counterparty_name}, not replying")
            return None
        if analysis.asks_to_wait:
            await self.send_to_counterparty(conversation, self.phraser.wait_acknowledgment())
            return None
        if await self.cancellation.intercept(conversation, text):
            return None
        self.cancellation.observe_reply(conversation, analysis)
        return analysis

    async def _handle_awaiting_mess_info(self, conversation: Conversation, text: str, attachment) -> None:
        analysis = await self._preamble(conversation, text, ignore_acknowledgments=True)
        if analysis is None:
            return

        if analysis.availability is False:
            await self._decline_unavailable(conversation)
            return
        if analysis.price is not None and analysis.price > conversation.price:
            await self._decline_price(conversation)
            return

        sub_category = await self.nlu.extract_sub_category(text)
        if sub_category:
            conversation.sub_category = sub_category
            if not self._sub_category_accepted(conversation):
                await self._decline_category(conversation)
                return
            self._transition(conversation, ConversationState.AWAITING_PAYMENT_INFO)
            identifier = self._derive_payment_identifier(conversation, analysis)
            if identifier:
                await self._enter_payment_pending(conversation, identifier)
                return
            await self.send_to_counterparty(conversation, self.phraser.ask_payment_identifier())
            return

        if analysis.needs_clarification and analysis.clarification_text:
            await self.send_to_counterparty(conversation, analysis.clarification_text)
            return

        await self.send_to_counterparty(conversation, self.phraser.ask_sub_category())

    async def _handle_awaiting_payment_info(self, conversation: Conversation, text: str, attachment) -> None:
        analysis = await self._preamble(conversation, text, ignore_acknowledgments=False)
        if analysis is None:
            return

        # Ambiguity is asked about, never read as a rejection
        if analysis.needs_clarification and analysis.clarification_text:
            await self.send_to_counterparty(conversation, analysis.clarification_text)
            return
        if analysis.availability is False:
            await self._decline_unavailable(conversation)
            return
        if analysis.price is not None and analysis.price > conversation.price:
            await self._decline_price(conversation)
            return

        if conversation.sub_category is None:
            sub_category = await self.nlu.extract_sub_category(text)
            if sub_category:
                conversation.sub_category = sub_category
                if not self._sub_category_accepted(conversation):
                    await self._decline_category(conversation)
                    return

        identifier = self._derive_payment_identifier(conversation, analysis)
        if identifier:
            await self._enter_payment_pending(conversation, identifier)
            return

        if conversation.state == ConversationState.INITIATING_CONTACT:
            self._transition(conversation, ConversationState.AWAITING_PAYMENT_INFO)
        await self.send_to_counterparty(conversation, self.phraser.ask_payment_identifier())

    async def _handle_payment_pending(self, conversation: Conversation, text: str, attachment) -> None:
        analysis = await self._preamble(conversation, text, ignore_acknowledgments=True)
        if analysis is None:
            return
        if analysis.asks_payment_status or len(text.strip()) > 3:
            await self.send_to_counterparty(conversation, self.phraser.payment_imminent())

    async def _handle_awaiting_coupon(self, conversation: Conversation, text: str, attachment) -> None:
        if attachment is not None:
            # A fresh image supersedes anything held earlier
            self.buffer.take(conversation.id)
            await self.complete(conversation, attachment)
            return

        found = await self.find_attachment(conversation)
        if found is not None:
            logger.info(f"Deliverable found by reconciliation for {conversation.id}")
            await self.complete(conversation, found)
            return

        analysis = await self._preamble(conversation, text, ignore_acknowledgments=True)
        if analysis is None:
            return
        if analysis.has_deliverable:
            logger.info(f"{conversation.counterparty_name} says the coupon was sent, waiting for the image")
            return
        if len(text.strip()) > 3:
            await self.send_to_counterparty(conversation, self.phraser.coupon_reminder())

    async def _handle_awaiting_refund(self, conversation: Conversation, text: str, attachment) -> None:
        if attachment is not None:
            await self._refund_proof_received(conversation)
            return

        signal = await self.nlu.detect_refund_confirmation(text)
        if signal.flag and signal.confidence > self.config.WITHDRAWAL_CONFIDENCE_THRESHOLD:
            await self.send_to_counterparty(conversation, self.phraser.ask_refund_screenshot())
            self._transition(conversation, ConversationState.AWAITING_REFUND_SCREENSHOT)
            return

        analysis = await self.nlu.classify_counterparty_reply(text)
        if analysis.asks_to_wait:
            await self.send_to_counterparty(conversation, self.phraser.wait_acknowledgment())
            return
        if len(text.strip()) > 2:
            await self.send_to_counterparty(conversation, self.phraser.refund_reminder())

    async def _handle_awaiting_refund_screenshot(self, conversation: Conversation, text: str, attachment) -> None:
        if attachment is not None:
            await self._refund_proof_received(conversation)
            return

        signal = await self.nlu.detect_refund_confirmation(text)
        if signal.flag or len(text.strip()) > 2:
            await self.send_to_counterparty(conversation, self.phraser.ask_refund_screenshot())

    async def _refund_proof_received(self, conversation: Conversation) -> None:
        await self.send_to_counterparty(conversation, self.phraser.refund_thanks())
        conversation.refund_received = True
        conversation.refund_screenshot_received = True
        await self.notify_operator(format_refund_received(conversation))
        await self.fail(conversation, FailureReason.REFUND_RECEIVED)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def _enter_payment_pending(self, conversation: Conversation, identifier: str) -> None:
        conversation.payment_identifier = identifier
        self._transition(conversation, ConversationState.PAYMENT_PENDING)
        logger.info(f"Payment details from {conversation.counterparty_name}: {identifier}")
        await self._request_purchase_approval(conversation)

    async def _request_purchase_approval(self, conversation: Conversation) -> None:
        await self.notify_operator(format_purchase_request(conversation))
        if conversation.is_terminal:
            return
        self.gateway.request(
            conversation.id,
            CheckpointKind.PURCHASE,
            self._on_purchase_decision,
            timeout=self.config.PURCHASE_CONFIRMATION_TIMEOUT_SECONDS,
            escalate_after=self.config.PURCHASE_ESCALATION_SECONDS,
            on_escalation=self._on_purchase_escalation,
        )

    async def _on_purchase_escalation(self, conversation_id: str) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.is_terminal:
            return
        await self.request_operator_alert()

    async def _on_purchase_decision(self, conversation_id: str, resolution: CheckpointResolution) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.state != ConversationState.PAYMENT_PENDING:
            logger.info(f"Purchase decision for {conversation_id} no longer applicable")
            return

        if resolution.value:
            logger.info(f"Operator approved purchase for {conversation_id}")
            await self.send_to_counterparty(conversation, self.phraser.payment_imminent())
            await self.notify_operator(format_payment_request(conversation))
            if conversation.is_terminal:
                return
            self.gateway.request(
                conversation.id,
                CheckpointKind.PAYMENT,
                self._on_payment_decision,
                timeout=self.config.PAYMENT_CONFIRMATION_TIMEOUT_SECONDS,
            )
            return

        reason = FailureReason.OPERATOR_TIMEOUT if resolution.timed_out else FailureReason.OPERATOR_DECLINED
        await self.send_to_counterparty(conversation, self.phraser.withdrawal(), essential=True)
        await self.fail(conversation, reason)

    async def _on_payment_decision(self, conversation_id: str, resolution: CheckpointResolution) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.state != ConversationState.PAYMENT_PENDING:
            logger.info(f"Payment decision for {conversation_id} no longer applicable")
            return

        if not resolution.value:
            await self.send_to_counterparty(conversation, self.phraser.withdrawal(), essential=True)
            await self.fail(conversation, FailureReason.PAYMENT_NOT_CONFIRMED)
            return

        conversation.payment_confirmed = True
        conversation.touch()
        self.save(conversation)
        logger.info(f"Payment asserted for {conversation_id}")

        attachment = await self.find_attachment(conversation)
        if attachment is not None:
            logger.info(f"Deliverable already received for {conversation_id}, completing")
            await self.complete(conversation, attachment, thanks=self.phraser.payment_done_with_thanks())
            return

        await self.send_to_counterparty(
            conversation,
            self.phraser.payment_confirmation(conversation.payment_identifier, conversation.price),
            essential=True,
        )
        if conversation.is_terminal:
            logger.info(f"Conversation {conversation_id} was finalized during payment confirmation")
            return
        self._enter_awaiting_coupon(conversation)

    def _enter_awaiting_coupon(self, conversation: Conversation) -> None:
        conversation.follow_up_count = 0
        conversation.follow_ups_exhausted = False
        conversation.last_follow_up_at = datetime.now()
        self._transition(conversation, ConversationState.AWAITING_COUPON)
        self.follow_ups.start(conversation.id)

    def resolve_checkpoint(self, conversation_id: str, kind: CheckpointKind, value: bool) -> bool:
        """
        Resolve a pending operator checkpoint from any channel.

        Returns:
            True if this call decided it; False if it was already decided or never pending

        Raises:
            ConversationNotFoundException: Unknown conversation id
        """
        if conversation_id not in self.conversations:
            raise ConversationNotFoundException(conversation_id)
        return self.gateway.resolve(conversation_id, CheckpointKind(kind), value)

    def handle_operator_reply(self, text: str) -> bool:
        """
        Map an operator chat reply onto the active conversation's checkpoints.

        "ok/okay/yes/y" approves the purchase, "no/n/cancel" declines whichever
        checkpoint is pending, "paid/done/sent" asserts payment.
        """
        holder = self.active_slot.holder
        if holder is None:
            return False

        reply = text.strip().lower()
        if reply in APPROVE_REPLIES:
            return self.gateway.resolve(holder, CheckpointKind.PURCHASE, True)
        if reply in DECLINE_REPLIES:
            if self.gateway.is_pending(holder, CheckpointKind.PURCHASE):
                return self.gateway.resolve(holder, CheckpointKind.PURCHASE, False)
            return self.gateway.resolve(holder, CheckpointKind.PAYMENT, False)
        if reply in PAID_REPLIES:
            return self.gateway.resolve(holder, CheckpointKind.PAYMENT, True)
        return False

    async def handle_operator_chat_message(self, counterparty_id: str, text: str) -> bool:
        """Fail the counterparty's open conversation if the operator typed a withdrawal there."""
        conversation = self._open_conversation_for(counterparty_id)
        if conversation is None:
            return False
        try:
            withdrawing = await self.nlu.detect_user_withdrawal(text)
        except Exception as e:
            logger.error(f"Operator withdrawal detection failed: {e}")
            return False
        if not withdrawing:
            return False

        logger.info(f"Operator withdrew from {conversation.counterparty_name} ({conversation.id})")
        self._record(conversation, "outgoing", text)
        await self.fail(conversation, FailureReason.OPERATOR_CANCELLED)
        return True

    # ------------------------------------------------------------------
    # Resumption
    # ------------------------------------------------------------------

    async def resume_all(self, persisted: list[Conversation]) -> None:
        """
        Rebuild the store after a restart.

        WHAT: Expire stale conversations, resume at most one
        WHY: The single-active invariant must hold across the whole batch
        HOW: Most recently updated eligible conversation claims the slot and gets
             its prompt re-issued; other eligible ones fail as superseded
        """
        now = datetime.now()
        ceiling = timedelta(minutes=self.config.INACTIVITY_TIMEOUT_MINUTES)
        candidates: list[Conversation] = []

        for conversation in persisted:
            self.conversations[conversation.id] = conversation
            if conversation.is_terminal:
                continue
            idle = now - conversation.updated_at
            if idle > ceiling and not self.config.is_exempt(conversation.counterparty_id):
                logger.info(f"Conversation {conversation.id} idle for {idle}, expiring")
                await self.fail(conversation, FailureReason.INACTIVITY_TIMEOUT)
                continue
            candidates.append(conversation)

        candidates.sort(key=lambda c: c.updated_at, reverse=True)
        for conversation in candidates:
            if not self.active_slot.claim(conversation.id):
                await self.fail(conversation, FailureReason.SUPERSEDED)
                continue
            logger.info(f"Resuming conversation {conversation.id} in {conversation.state.value}")
            try:
                await self._reissue_prompt(conversation)
            except Exception:
                logger.exception(f"Resuming {conversation.id} failed")

    async def _reissue_prompt(self, conversation: Conversation) -> None:
        state = conversation.state

        if state in (
            ConversationState.INITIATING_CONTACT,
            ConversationState.AWAITING_PAYMENT_INFO,
            ConversationState.PAYMENT_PENDING,
        ):
            if conversation.payment_identifier:
                if state != ConversationState.PAYMENT_PENDING:
                    self._transition(conversation, ConversationState.PAYMENT_PENDING)
                if not self.gateway.pending_kinds(conversation.id):
                    await self._request_purchase_approval(conversation)
                return
            if state != ConversationState.AWAITING_PAYMENT_INFO:
                self._transition(conversation, ConversationState.AWAITING_PAYMENT_INFO)
            await self.send_to_counterparty(conversation, self.phraser.ask_payment_identifier())
        elif state == ConversationState.AWAITING_MESS_INFO:
            await self.send_to_counterparty(conversation, self.phraser.ask_sub_category())
        elif state == ConversationState.AWAITING_COUPON:
            attachment = await self.find_attachment(conversation)
            if attachment is not None:
                await self.complete(conversation, attachment)
                return
            await self.send_to_counterparty(conversation, self.phraser.coupon_reminder())
            if conversation.follow_ups_exhausted:
                # A restart opens a fresh round of follow-ups
                conversation.follow_up_count = 0
                conversation.follow_ups_exhausted = False
            self.save(conversation)
            self.follow_ups.start(conversation.id)
        elif state == ConversationState.AWAITING_REFUND:
            await self.send_to_counterparty(conversation, self.phraser.refund_reminder())
        elif state == ConversationState.AWAITING_REFUND_SCREENSHOT:
            await self.send_to_counterparty(conversation, self.phraser.ask_refund_screenshot())

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def complete(
        self,
        conversation: Conversation,
        attachment: Optional[bytes] = None,
        thanks: Optional[str] = None,
    ) -> Result:
        """
        Finalize a conversation as COMPLETED.

        Local state is committed before any collaborator call, so a failing
        notification cannot leave the conversation half-finished.
        """
        refused = self._terminal_guard(conversation)
        if refused is not None:
            return refused

        now = datetime.now()
        conversation.state = ConversationState.COMPLETED
        conversation.completed_at = now
        conversation.updated_at = now
        self._release(conversation)
        self.save(conversation)
        logger.info(f"Conversation {conversation.id} completed with {conversation.counterparty_name}")

        await self.send_to_counterparty(conversation, thanks or self.phraser.thanks())

        reference = None
        if attachment is not None:
            reference = self._safely(
                self.storage.save_attachment, conversation.category, attachment, conversation.counterparty_name
            )
        self._record_outcome(conversation, "success", image_reference=reference)

        caption = format_success_caption(conversation)
        if attachment is not None:
            try:
                await self.transport.notify_operator_attachment(attachment, caption)
            except Exception as e:
                logger.error(f"Forwarding deliverable to operator failed: {e}")
        else:
            await self.notify_operator(caption)

        self._safely(self.eligibility.mark_fulfilled, conversation.category, conversation.id)
        return Result(success=True)

    async def fail(self, conversation: Conversation, reason: str) -> Result:
        """Finalize a conversation as FAILED with a reason."""
        refused = self._terminal_guard(conversation)
        if refused is not None:
            return refused

        now = datetime.now()
        conversation.state = ConversationState.FAILED
        conversation.failure_reason = reason
        conversation.completed_at = now
        conversation.updated_at = now
        self._release(conversation)
        self.save(conversation)
        logger.info(f"Conversation {conversation.id} failed: {reason}")

        self._record_outcome(conversation, "failed")
        await self.notify_operator(format_failure_summary(conversation))
        if self.on_failed is not None:
            self._safely(self.on_failed, conversation.id, reason)
        return Result(success=True)

    def _terminal_guard(self, conversation: Conversation) -> Optional[Result]:
        if conversation.state == ConversationState.COMPLETED:
            logger.warning(f"Conversation {conversation.id} already completed")
            return Result(success=False, error="Conversation already completed")
        if conversation.state == ConversationState.FAILED:
            logger.warning(f"Conversation {conversation.id} already failed")
            return Result(success=False, error="Conversation already failed")
        return None

    def _release(self, conversation: Conversation) -> None:
        self.active_slot.release_if(conversation.id)
        self.buffer.clear(conversation.id)
        self.follow_ups.cancel(conversation.id)
        self.gateway.cancel(conversation.id)
        conversation.cancel_escalation = 0

    def _record_outcome(self, conversation: Conversation, status: str, image_reference: Optional[str] = None) -> None:
        record = OutcomeRecord(
            conversation_id=conversation.id,
            status=status,
            category=conversation.category,
            counterparty_id=conversation.counterparty_id,
            counterparty_name=conversation.counterparty_name,
            price=conversation.price,
            sub_category=conversation.sub_category,
            payment_identifier=conversation.payment_identifier,
            failure_reason=conversation.failure_reason,
            refund_requested=conversation.refund_requested,
            refund_received=conversation.refund_received,
            image_reference=image_reference,
        )
        self._safely(self.storage.record_outcome, record)

    # ------------------------------------------------------------------
    # Manual overrides and queries
    # ------------------------------------------------------------------

    async def force_complete(self, conversation_id: str) -> Result:
        """Operator override; runs on the event queue like every other event."""
        return await self.dispatcher.call(self._force_complete, conversation_id)

    async def force_fail(self, conversation_id: str, reason: Optional[str] = None) -> Result:
        return await self.dispatcher.call(self._force_fail, conversation_id, reason)

    async def _force_complete(self, conversation_id: str) -> Result:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return Result(success=False, error="Conversation not found")
        refused = self._terminal_guard(conversation)
        if refused is not None:
            return refused
        logger.info(f"Manual completion of {conversation_id}")
        return await self.complete(conversation)

    async def _force_fail(self, conversation_id: str, reason: Optional[str] = None) -> Result:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return Result(success=False, error="Conversation not found")
        refused = self._terminal_guard(conversation)
        if refused is not None:
            return refused
        logger.info(f"Manual failure of {conversation_id}")
        await self.send_to_counterparty(conversation, self.phraser.withdrawal(), essential=True)
        return await self.fail(conversation, reason or FailureReason.MANUAL)

    def list_visible(self) -> list[Conversation]:
        return filter_visible(self.conversations.values(), self.config.VISIBILITY_WINDOW_SECONDS)

    def messages_of(self, conversation_id: str) -> list[ChatMessage]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundException(conversation_id)
        return list(conversation.messages)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    # ------------------------------------------------------------------
    # Queue entry points for adapters
    # ------------------------------------------------------------------

    def submit_counterparty_message(self, counterparty_id: str, text: str, attachment: Optional[bytes] = None) -> None:
        self.dispatcher.submit(self.handle_counterparty_message, counterparty_id, text, attachment)

    def submit_group_message(self, message: GroupMessage) -> None:
        self.dispatcher.submit(self.handle_group_message, message)

    def submit_operator_chat_message(self, counterparty_id: str, text: str) -> None:
        self.dispatcher.submit(self.handle_operator_chat_message, counterparty_id, text)

    def start(self) -> None:
        self.dispatcher.start()
        logger.info("Negotiation engine started")

    async def shutdown(self) -> None:
        for conversation_id in list(self.conversations):
            self.follow_ups.cancel(conversation_id)
            self.gateway.cancel(conversation_id)
        await self.dispatcher.stop()
        logger.info("Negotiation engine stopped")

    # ------------------------------------------------------------------
    # Collaborator helpers (also used by the delegated subsystems)
    # ------------------------------------------------------------------

    async def send_to_counterparty(self, conversation: Conversation, text: str, essential: bool = False) -> bool:
        """
        Send a message to the counterparty and log it in the conversation.

        Essential sends (declines, payment notices) are retried with
        exponential backoff; the caller proceeds regardless of the outcome.
        """
        attempts = max(1, self.config.SEND_MAX_RETRIES) if essential else 1
        for attempt in range(attempts):
            try:
                await self.transport.send(conversation.counterparty_id, text)
                self._record(conversation, "outgoing", text)
                return True
            except Exception as e:
                logger.warning(
                    f"Send to {conversation.counterparty_name} failed (attempt {attempt + 1}/{attempts}): {e}"
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.SEND_RETRY_DELAY * (2 ** attempt))
        logger.error(f"Giving up sending to {conversation.counterparty_name}: {text[:60]!r}")
        return False

    async def notify_operator(self, text: str) -> None:
        try:
            await self.transport.notify_operator(text)
        except Exception as e:
            logger.error(f"Operator notification failed: {e}")

    async def request_operator_alert(self) -> None:
        try:
            await self.transport.request_out_of_band_alert(self.config.OPERATOR_ID)
        except Exception as e:
            logger.error(f"Out-of-band alert failed: {e}")

    async def find_attachment(self, conversation: Conversation) -> Optional[bytes]:
        """Held early attachment first, then the transport's recent attachments."""
        held = self.buffer.take(conversation.id)
        if held is not None:
            return held
        try:
            recent = await self.transport.fetch_recent_attachments(
                conversation.counterparty_id, self.config.ATTACHMENT_SCAN_LIMIT, conversation.created_at
            )
        except Exception as e:
            logger.warning(f"Attachment scan for {conversation.id} failed: {e}")
            return None
        return recent[0] if recent else None

    def save(self, conversation: Conversation) -> None:
        self._safely(self.storage.persist, conversation)

    def transition(self, conversation: Conversation, state: ConversationState) -> None:
        self._transition(conversation, state)

    def release_active(self, conversation_id: str) -> bool:
        return self.active_slot.release_if(conversation_id)

    def stop_timers(self, conversation_id: str) -> None:
        self.follow_ups.cancel(conversation_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, conversation: Conversation, state: ConversationState) -> None:
        """
        Move a live conversation to a new non-terminal state.

        Raises:
            ConversationAlreadyTerminalException: The conversation was finalized
                while its handler was suspended; the handler must stop
        """
        previous = conversation.state
        if conversation.is_terminal:
            logger.warning(
                f"Conversation {conversation.id} is {previous.value}, ignoring move to {state.value}"
            )
            raise ConversationAlreadyTerminalException(conversation.id, previous.value)
        conversation.state = state
        conversation.touch()
        self.save(conversation)
        logger.info(f"Conversation {conversation.id}: {previous.value} -> {state.value}")

    def _record(self, conversation: Conversation, direction: str, text: str, has_attachment: bool = False) -> None:
        conversation.messages.append(ChatMessage(direction=direction, text=text, has_attachment=has_attachment))
        truncate_history(conversation.messages, self.config.MAX_HISTORY_MESSAGES)

    def _safely(self, fn: Callable, *args):
        try:
            return fn(*args)
        except Exception as e:
            logger.error(f"{getattr(fn, '__name__', fn)} failed: {e}")
            return None

    def _open_conversation_for(self, counterparty_id: str) -> Optional[Conversation]:
        open_conversations = [
            c for c in self.conversations.values()
            if c.counterparty_id == counterparty_id and not c.is_terminal
        ]
        if not open_conversations:
            return None
        return max(open_conversations, key=lambda c: c.updated_at)

    def _recent_conversation(self, counterparty_id: str, category) -> Optional[Conversation]:
        since = datetime.now() - timedelta(minutes=self.config.RECENT_CONVERSATION_WINDOW_MINUTES)
        recent = [
            c for c in self.conversations.values()
            if c.counterparty_id == counterparty_id and c.category == category and c.created_at >= since
        ]
        if not recent:
            return None
        return max(recent, key=lambda c: c.created_at)

    def _failed_today(self, counterparty_id: str) -> bool:
        today = datetime.now().date()
        return any(
            c.counterparty_id == counterparty_id
            and c.state == ConversationState.FAILED
            and c.created_at.date() == today
            for c in self.conversations.values()
        )

    def _sub_category_accepted(self, conversation: Conversation) -> bool:
        accepted = self._safely(self.eligibility.accepted_sub_categories, conversation.category)
        if not accepted or not conversation.sub_category:
            return True
        return conversation.sub_category.lower() in {name.lower() for name in accepted}

    def _derive_payment_identifier(self, conversation: Conversation, analysis: ReplyAnalysis) -> Optional[str]:
        if analysis.use_same_number:
            phone = phone_from_counterparty_id(conversation.counterparty_id)
            if phone:
                return f"{phone}@upi"
            logger.info(f"Same-number reply but no phone in {conversation.counterparty_id}")
        if analysis.payment_identifier:
            return analysis.payment_identifier
        if analysis.phone_number:
            return f"{analysis.phone_number}@upi"
        return None

    async def _decline_unavailable(self, conversation: Conversation) -> None:
        await self.send_to_counterparty(conversation, self.phraser.not_available_ack())
        await self.fail(conversation, FailureReason.OFFER_WITHDRAWN)

    async def _decline_price(self, conversation: Conversation) -> None:
        await self.send_to_counterparty(conversation, self.phraser.price_decline(conversation.price), essential=True)
        await self.fail(conversation, FailureReason.PRICE_EXCEEDED)

    async def _decline_category(self, conversation: Conversation) -> None:
        accepted = self._safely(self.eligibility.accepted_sub_categories, conversation.category) or []
        await self.send_to_counterparty(
            conversation,
            self.phraser.category_decline(accepted, conversation.sub_category or "that"),
            essential=True,
        )
        await self.fail(conversation, FailureReason.CATEGORY_MISMATCH)
