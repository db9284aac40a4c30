"""
In-process outbox transport.

WHAT: Transport implementation that queues outgoing messages for a chat bridge to poll
WHY: The HTTP surface drives the engine without a bundled chat client
HOW: Bounded deques for counterparty and operator traffic; inbound attachments
     pushed by the inbound endpoint are kept per counterparty for reconciliation scans
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OutboundMessage:
    """One queued outgoing message."""
    recipient: str
    text: str
    kind: str = "text"  # text, attachment, alert
    has_attachment: bool = False
    created_at: datetime = field(default_factory=datetime.now)


class OutboxTransport:
    """Transport protocol implementation backed by memory queues."""

    OPERATOR = "operator"

    def __init__(self, max_messages: int = 500, max_attachments: int = 20):
        self._outbox: Deque[OutboundMessage] = deque(maxlen=max_messages)
        self._attachments: Dict[str, Deque[tuple[datetime, bytes]]] = {}
        self._max_attachments = max_attachments

    async def send(self, counterparty_id: str, text: str) -> None:
        self._outbox.append(OutboundMessage(recipient=counterparty_id, text=text))
        logger.info(f"-> {counterparty_id}: {text[:80]!r}")

    async def send_attachment(self, counterparty_id: str, data: bytes, caption: str) -> None:
        self._outbox.append(OutboundMessage(
            recipient=counterparty_id, text=caption, kind="attachment", has_attachment=True
        ))
        logger.info(f"-> {counterparty_id}: attachment ({len(data)} bytes)")

    async def notify_operator(self, text: str) -> None:
        self._outbox.append(OutboundMessage(recipient=self.OPERATOR, text=text))
        logger.info(f"-> operator: {text.splitlines()[0] if text else ''}")

    async def notify_operator_attachment(self, data: bytes, caption: str) -> None:
        self._outbox.append(OutboundMessage(
            recipient=self.OPERATOR, text=caption, kind="attachment", has_attachment=True
        ))
        logger.info(f"-> operator: attachment ({len(data)} bytes)")

    async def request_out_of_band_alert(self, operator_id: str) -> None:
        self._outbox.append(OutboundMessage(recipient=operator_id, text="alert", kind="alert"))
        logger.warning(f"Out-of-band alert requested for {operator_id}")

    async def fetch_recent_attachments(
        self,
        counterparty_id: str,
        limit: int,
        since: datetime
    ) -> List[bytes]:
        """Attachments received from the counterparty after `since`, newest first."""
        received = self._attachments.get(counterparty_id, ())
        recent = [data for (at, data) in reversed(received) if at >= since]
        return recent[:limit]

    def record_inbound_attachment(
        self,
        counterparty_id: str,
        data: bytes,
        received_at: Optional[datetime] = None
    ) -> None:
        """Remember an inbound attachment so later scans can find it."""
        bucket = self._attachments.setdefault(counterparty_id, deque(maxlen=self._max_attachments))
        bucket.append((received_at or datetime.now(), data))

    def messages(self, recipient: Optional[str] = None) -> List[OutboundMessage]:
        if recipient is None:
            return list(self._outbox)
        return [m for m in self._outbox if m.recipient == recipient]

    def drain(self) -> List[OutboundMessage]:
        """Return and clear every queued message."""
        drained = list(self._outbox)
        self._outbox.clear()
        return drained
