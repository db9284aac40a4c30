"""
The singleton "currently negotiating" marker.

WHAT: Holds at most one conversation id at a time
WHY: The engine negotiates with one counterparty at a time
HOW: Compare-and-set claim/release; only the engine holds a reference
"""

from typing import Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)


class ActiveSlot:
    """Compare-and-set holder of the active conversation id."""

    def __init__(self):
        self._holder: Optional[str] = None

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    @property
    def is_free(self) -> bool:
        return self._holder is None

    def claim(self, conversation_id: str) -> bool:
        """Take the slot if it is free or already ours."""
        if self._holder is not None and self._holder != conversation_id:
            return False
        if self._holder is None:
            logger.info(f"Active slot claimed by {conversation_id}")
        self._holder = conversation_id
        return True

    def release_if(self, conversation_id: str) -> bool:
        """Release only when held by conversation_id."""
        if self._holder != conversation_id:
            return False
        self._holder = None
        logger.info(f"Active slot released by {conversation_id}")
        return True
