"""
Deliverable follow-up timers.

WHAT: Recurring reminders while a conversation waits for the coupon image
WHY: Counterparties forget to send the coupon after being paid
HOW: One cancellable call_later handle per conversation; each tick is enqueued
     on the dispatcher and re-validates the state guard before acting
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from ..models.conversation import ConversationState
from .dispatcher import EventDispatcher
from .summary_service import format_follow_up_exhausted
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..core.negotiation_engine import NegotiationEngine

logger = get_logger(__name__)


class FollowUpTimerSubsystem:
    """Schedules and runs AWAITING_COUPON follow-ups."""

    GUARD_STATE = ConversationState.AWAITING_COUPON

    def __init__(
        self,
        host: "NegotiationEngine",
        dispatcher: EventDispatcher,
        interval: float,
        max_follow_ups: int,
    ):
        self._host = host
        self._dispatcher = dispatcher
        self.interval = interval
        self.max_follow_ups = max_follow_ups
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def start(self, conversation_id: str) -> None:
        """(Re)start the schedule for a conversation entering AWAITING_COUPON."""
        self.cancel(conversation_id)
        self._schedule(conversation_id)

    def cancel(self, conversation_id: str) -> None:
        handle = self._handles.pop(conversation_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug(f"Follow-up timer cancelled for {conversation_id}")

    def is_scheduled(self, conversation_id: str) -> bool:
        return conversation_id in self._handles

    def _schedule(self, conversation_id: str) -> None:
        loop = asyncio.get_running_loop()
        previous = self._handles.pop(conversation_id, None)
        if previous is not None:
            previous.cancel()
        self._handles[conversation_id] = loop.call_later(self.interval, self._fire, conversation_id)

    def _fire(self, conversation_id: str) -> None:
        self._handles.pop(conversation_id, None)
        self._dispatcher.submit(self.tick, conversation_id)

    async def tick(self, conversation_id: str) -> None:
        """
        Run one follow-up step.

        WHAT: Re-check the deliverable, then remind or give up
        WHY: The deliverable may have arrived through a path the realtime handler missed
        HOW: Guard state -> reconcile -> bound check -> escalating reminder -> reschedule
        """
        host = self._host
        conversation = host.get_conversation(conversation_id)
        if conversation is None or conversation.state != self.GUARD_STATE:
            logger.debug(f"Follow-up tick for {conversation_id} ignored (no longer awaiting coupon)")
            return

        attachment = await host.find_attachment(conversation)
        if attachment is not None:
            logger.info(f"Deliverable found during follow-up for {conversation_id}")
            await host.complete(conversation, attachment)
            return

        if conversation.follow_up_count >= self.max_follow_ups:
            # Soft failure: stays non-terminal, slot freed for other offers
            conversation.follow_ups_exhausted = True
            host.release_active(conversation.id)
            host.save(conversation)
            logger.warning(
                f"No deliverable from {conversation.counterparty_name} after "
                f"{conversation.follow_up_count} follow-ups ({conversation_id})"
            )
            await host.notify_operator(format_follow_up_exhausted(conversation))
            return

        await host.send_to_counterparty(
            conversation, host.phraser.coupon_follow_up(conversation.follow_up_count)
        )
        conversation.follow_up_count += 1
        conversation.last_follow_up_at = datetime.now()
        conversation.touch()
        host.save(conversation)
        logger.info(f"Follow-up {conversation.follow_up_count}/{self.max_follow_ups} sent for {conversation_id}")

        if conversation.state == self.GUARD_STATE:
            self._schedule(conversation_id)
