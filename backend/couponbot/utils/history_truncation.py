"""
Conversation history truncation utilities.

WHAT: Keep a conversation's message log bounded
WHY: Conversations are snapshotted after every mutation; an unbounded log grows the snapshot forever
HOW: FIFO eviction of the oldest entries, most recent entries always kept
"""

from typing import List, TypeVar

from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def truncate_history(history: List[T], max_messages: int = 50) -> List[T]:
    """
    Evict the oldest messages so at most max_messages remain.

    The list is trimmed in place and also returned, so callers holding a
    reference to the conversation's log see the bounded version.

    Args:
        history: Message log, oldest first
        max_messages: Maximum number of entries to keep (default: 50)

    Returns:
        The same list, trimmed
    """
    if max_messages <= 0:
        evicted = len(history)
        history.clear()
    else:
        evicted = max(0, len(history) - max_messages)
        if evicted:
            del history[:evicted]

    if evicted:
        logger.debug(f"Evicted {evicted} oldest message(s) from history (kept {len(history)})")

    return history
