"""
Human confirmation gateway.

WHAT: Registry of pending operator decisions, one per (conversation, checkpoint kind)
WHY: Decisions arrive from several channels (chat reply, HTTP, timers) and may race
HOW: asyncio futures resolved first-wins; timeouts and escalations via loop.call_later;
     the continuation is enqueued on the dispatcher, never run inline
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ..models.conversation import CheckpointKind
from .dispatcher import EventDispatcher
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckpointResolution:
    """How a checkpoint was decided."""
    value: bool
    timed_out: bool = False


DecisionHandler = Callable[[str, CheckpointResolution], Awaitable[Any]]
EscalationHandler = Callable[[str], Awaitable[Any]]


@dataclass
class PendingCheckpoint:
    conversation_id: str
    kind: CheckpointKind
    future: asyncio.Future
    on_decision: DecisionHandler
    requested_at: datetime = field(default_factory=datetime.now)
    timers: list[asyncio.TimerHandle] = field(default_factory=list)

    def cancel_timers(self) -> None:
        for timer in self.timers:
            timer.cancel()
        self.timers.clear()


class HumanConfirmationGateway:
    """Addressable pending-checkpoint registry with first-resolution-wins semantics."""

    def __init__(self, dispatcher: EventDispatcher):
        self._dispatcher = dispatcher
        self._pending: dict[tuple[str, CheckpointKind], PendingCheckpoint] = {}

    def request(
        self,
        conversation_id: str,
        kind: CheckpointKind,
        on_decision: DecisionHandler,
        *,
        timeout: float,
        escalate_after: Optional[float] = None,
        on_escalation: Optional[EscalationHandler] = None,
    ) -> asyncio.Future:
        """
        Register a pending decision and arm its timers.

        WHAT: Create the future for this checkpoint
        WHY: The engine must return to the event loop while the operator decides
        HOW: Timeout resolves False; escalation (strictly earlier) only alerts

        Args:
            conversation_id: Conversation awaiting the decision
            kind: Which checkpoint
            on_decision: Coroutine enqueued with (conversation_id, resolution)
            timeout: Seconds until an automatic negative resolution
            escalate_after: Seconds until an out-of-band alert, must be < timeout
            on_escalation: Coroutine enqueued with (conversation_id,)

        Returns:
            The checkpoint future (already pending one if requested twice)
        """
        kind = CheckpointKind(kind)
        key = (conversation_id, kind)
        existing = self._pending.get(key)
        if existing is not None:
            logger.warning(f"{kind.value} checkpoint already pending for {conversation_id}")
            return existing.future

        if escalate_after is not None and escalate_after >= timeout:
            raise ValueError("escalation must fire strictly before the decision timeout")

        loop = asyncio.get_running_loop()
        pending = PendingCheckpoint(
            conversation_id=conversation_id,
            kind=kind,
            future=loop.create_future(),
            on_decision=on_decision,
        )
        pending.timers.append(loop.call_later(timeout, self._expire, key, pending.future))
        if escalate_after is not None and on_escalation is not None:
            pending.timers.append(
                loop.call_later(escalate_after, self._escalate, key, pending.future, on_escalation)
            )
        self._pending[key] = pending

        logger.info(f"{kind.value} checkpoint requested for {conversation_id} (timeout={timeout}s)")
        return pending.future

    def resolve(
        self,
        conversation_id: str,
        kind: CheckpointKind,
        value: bool,
        *,
        timed_out: bool = False,
    ) -> bool:
        """
        Resolve a pending checkpoint.

        Returns:
            True if this call decided the checkpoint, False if nothing was
            pending (already decided, timed out, or cancelled)
        """
        kind = CheckpointKind(kind)
        pending = self._pending.pop((conversation_id, kind), None)
        if pending is None:
            logger.debug(f"Ignoring {kind.value} resolution for {conversation_id}: nothing pending")
            return False

        pending.cancel_timers()
        resolution = CheckpointResolution(value=bool(value), timed_out=timed_out)
        if not pending.future.done():
            pending.future.set_result(resolution)

        logger.info(
            f"{kind.value} checkpoint for {conversation_id} resolved "
            f"{'by timeout' if timed_out else 'by operator'}: {resolution.value}"
        )
        self._dispatcher.submit(pending.on_decision, conversation_id, resolution)
        return True

    def is_pending(self, conversation_id: str, kind: CheckpointKind) -> bool:
        return (conversation_id, CheckpointKind(kind)) in self._pending

    def pending_kinds(self, conversation_id: str) -> list[CheckpointKind]:
        return [kind for (conv_id, kind) in self._pending if conv_id == conversation_id]

    def cancel(self, conversation_id: str) -> int:
        """Drop every pending checkpoint of a conversation without invoking its continuation."""
        keys = [key for key in self._pending if key[0] == conversation_id]
        for key in keys:
            pending = self._pending.pop(key)
            pending.cancel_timers()
            if not pending.future.done():
                pending.future.cancel()
        if keys:
            logger.info(f"Cancelled {len(keys)} pending checkpoint(s) for {conversation_id}")
        return len(keys)

    def _expire(self, key: tuple[str, CheckpointKind], future: asyncio.Future) -> None:
        pending = self._pending.get(key)
        if pending is None or pending.future is not future:
            return
        logger.warning(f"{key[1].value} checkpoint for {key[0]} timed out")
        self.resolve(key[0], key[1], False, timed_out=True)

    def _escalate(
        self,
        key: tuple[str, CheckpointKind],
        future: asyncio.Future,
        on_escalation: EscalationHandler,
    ) -> None:
        pending = self._pending.get(key)
        if pending is None or pending.future is not future:
            return
        logger.info(f"{key[1].value} checkpoint for {key[0]} still undecided, escalating")
        self._dispatcher.submit(on_escalation, key[0])
