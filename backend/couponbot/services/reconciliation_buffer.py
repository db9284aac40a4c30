"""
Image reconciliation buffer.

WHAT: Holds deliverables that arrive before the state machine asks for them
WHY: Counterparties often send the coupon while payment is still being confirmed
HOW: Per-conversation early slot (consumed once) plus a cumulative seen-log
"""

from dataclasses import dataclass, field
from typing import Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _Entry:
    early: Optional[bytes] = None
    seen: list[bytes] = field(default_factory=list)


class ImageReconciliationBuffer:
    """Early-attachment holding area, keyed by conversation id."""

    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def record_seen(self, conversation_id: str, data: bytes) -> None:
        """Log every attachment seen for the conversation, whatever the state."""
        self._entries.setdefault(conversation_id, _Entry()).seen.append(data)

    def hold_early(self, conversation_id: str, data: bytes) -> None:
        """Keep an attachment for later consumption; a newer one replaces an older one."""
        entry = self._entries.setdefault(conversation_id, _Entry())
        entry.early = data
        logger.info(f"Early attachment held for {conversation_id} ({len(data)} bytes)")

    def has_early(self, conversation_id: str) -> bool:
        entry = self._entries.get(conversation_id)
        return entry is not None and entry.early is not None

    def take(self, conversation_id: str) -> Optional[bytes]:
        """Consume the held attachment; a second take returns None."""
        entry = self._entries.get(conversation_id)
        if entry is None or entry.early is None:
            return None
        data, entry.early = entry.early, None
        logger.info(f"Early attachment consumed for {conversation_id}")
        return data

    def seen(self, conversation_id: str) -> list[bytes]:
        entry = self._entries.get(conversation_id)
        return list(entry.seen) if entry else []

    def clear(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)
