"""
Visibility filtering for presentation layers.

WHAT: Decide which conversations a dashboard should show
WHY: Finished conversations linger briefly so the operator sees the outcome
HOW: Non-terminal always visible; terminal visible until completed_at + window
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..models.conversation import Conversation
from ..utils.logger import get_logger

logger = get_logger(__name__)


def is_visible(conversation: Conversation, now: datetime, window_seconds: int) -> bool:
    """
    Check if a conversation should be shown.

    Args:
        conversation: Conversation to check
        now: Reference time
        window_seconds: Post-completion visibility window

    Returns:
        True if the conversation is visible
    """
    if not conversation.is_terminal:
        return True
    if conversation.completed_at is None:
        return False
    return now - conversation.completed_at <= timedelta(seconds=window_seconds)


def filter_visible(
    conversations: Iterable[Conversation],
    window_seconds: int,
    now: Optional[datetime] = None,
) -> List[Conversation]:
    """
    Filter conversations for presentation, most recently updated first.

    Args:
        conversations: All known conversations
        window_seconds: Post-completion visibility window
        now: Reference time (defaults to datetime.now())

    Returns:
        Visible conversations
    """
    now = now or datetime.now()
    all_conversations = list(conversations)
    visible = [c for c in all_conversations if is_visible(c, now, window_seconds)]
    visible.sort(key=lambda c: c.updated_at, reverse=True)

    logger.debug(f"Filtered {len(all_conversations)} conversations to {len(visible)} visible")
    return visible
