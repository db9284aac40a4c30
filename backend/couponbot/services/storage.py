"""
SQL-backed storage collaborator.

WHAT: Persist conversations, record outcomes, save coupon images
WHY: The engine checkpoints after every mutation and resumes from these rows
HOW: SQLAlchemy sessions via get_db(); image bytes written under COUPONS_DIR
"""

import re
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..core.config import settings
from ..core.database import SessionLocal, get_db
from ..core.models import ConversationRecord, CouponImage, DealRecord
from ..models.conversation import Conversation, CouponType, OutcomeRecord
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_")[:40] or "unknown"


class SqlStorage:
    """Storage protocol implementation over SQLite."""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        coupons_dir: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.coupons_dir = Path(coupons_dir or settings.COUPONS_DIR)

    def persist(self, conversation: Conversation) -> None:
        """Upsert the conversation snapshot."""
        with get_db(self._session_factory) as db:
            record = db.get(ConversationRecord, conversation.id)
            if record is None:
                record = ConversationRecord(id=conversation.id)
                db.add(record)
            record.counterparty_id = conversation.counterparty_id
            record.counterparty_name = conversation.counterparty_name
            record.category = conversation.category
            record.state = conversation.state
            record.snapshot = conversation.model_dump(mode="json")
            record.created_at = conversation.created_at
            record.updated_at = conversation.updated_at
            record.completed_at = conversation.completed_at
        logger.debug(f"Persisted conversation {conversation.id} ({conversation.state.value})")

    def record_outcome(self, record: OutcomeRecord) -> None:
        with get_db(self._session_factory) as db:
            db.add(DealRecord(**record.model_dump()))
        logger.info(f"Recorded {record.status} outcome for {record.conversation_id}")

    def save_attachment(self, category: CouponType, data: bytes, counterparty_name: str) -> str:
        """
        Write the deliverable to disk and index it.

        Returns:
            File path of the saved image
        """
        folder = self.coupons_dir / CouponType(category).value
        folder.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = folder / f"{stamp}_{_safe_name(counterparty_name)}.jpg"
        path.write_bytes(data)

        with get_db(self._session_factory) as db:
            db.add(CouponImage(
                category=category,
                counterparty_name=counterparty_name,
                file_path=str(path),
                size_bytes=len(data),
            ))
        logger.info(f"Saved {category.value} coupon image to {path}")
        return str(path)

    def load_conversations(self) -> List[Conversation]:
        """All persisted conversations, oldest first."""
        with get_db(self._session_factory) as db:
            rows = db.execute(
                select(ConversationRecord).order_by(ConversationRecord.created_at)
            ).scalars().all()
            conversations = [Conversation.model_validate(row.snapshot) for row in rows]
        logger.info(f"Loaded {len(conversations)} persisted conversation(s)")
        return conversations

    def deals_on(self, day: date) -> List[DealRecord]:
        """Deal rows recorded on a given day."""
        start = datetime.combine(day, datetime.min.time())
        end = datetime.combine(day, datetime.max.time())
        with get_db(self._session_factory) as db:
            return list(db.execute(
                select(DealRecord)
                .where(DealRecord.recorded_at >= start, DealRecord.recorded_at <= end)
                .order_by(DealRecord.recorded_at)
            ).scalars().all())
