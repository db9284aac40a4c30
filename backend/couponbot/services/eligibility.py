"""
Daily eligibility oracle.

WHAT: Decides whether a meal slot may still be bought today
WHY: One lunch and one dinner coupon per day, only before the meal cutoff
HOW: In-memory per-day state (bought, paused, preferences) reset on date change
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, Optional

from ..core.config import Settings, settings as default_settings
from ..models.conversation import CouponType
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SlotState:
    bought: bool = False
    paused: bool = False
    conversation_id: Optional[str] = None
    preferences: list[str] = field(default_factory=list)


def _parse_cutoff(value: str) -> Optional[time]:
    if not value:
        return None
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


class DailyEligibility:
    """
    Per-day slot tracker implementing the EligibilityOracle protocol.

    In test mode cutoffs and the once-per-day limit are ignored, pause and
    preferences still apply.
    """

    def __init__(
        self,
        config: Settings = default_settings,
        test_mode: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.test_mode = test_mode
        self._clock = clock
        self._cutoffs = {
            CouponType.LUNCH: _parse_cutoff(config.LUNCH_CUTOFF),
            CouponType.DINNER: _parse_cutoff(config.DINNER_CUTOFF),
        }
        self._date: date = clock().date()
        self._slots = {category: SlotState() for category in CouponType}
        self._failures: dict[str, str] = {}

    def _reset_if_new_day(self) -> None:
        today = self._clock().date()
        if today != self._date:
            logger.info(f"New day {today}, resetting daily slots")
            self._date = today
            self._slots = {category: SlotState() for category in CouponType}
            self._failures = {}

    def _past_cutoff(self, category: CouponType) -> bool:
        cutoff = self._cutoffs.get(category)
        return cutoff is not None and self._clock().time() >= cutoff

    def can_start_category(self, category: CouponType) -> bool:
        self._reset_if_new_day()
        slot = self._slots[CouponType(category)]
        if slot.paused:
            logger.debug(f"{category.value} slot is paused")
            return False
        if self.test_mode:
            return True
        if self._past_cutoff(category):
            logger.debug(f"{category.value} cutoff passed")
            return False
        return not slot.bought

    def accepted_sub_categories(self, category: CouponType) -> Optional[list[str]]:
        self._reset_if_new_day()
        preferences = self._slots[CouponType(category)].preferences
        return list(preferences) if preferences else None

    def mark_fulfilled(self, category: CouponType, conversation_id: str) -> None:
        self._reset_if_new_day()
        slot = self._slots[CouponType(category)]
        slot.bought = True
        slot.conversation_id = conversation_id
        logger.info(f"{category.value} coupon marked as bought ({conversation_id})")

    def record_failure(self, conversation_id: str, reason: str) -> None:
        """Sink for failed negotiations; counted per day for the status view."""
        self._reset_if_new_day()
        self._failures[conversation_id] = reason
        logger.info(f"Failed negotiation recorded for today ({conversation_id}: {reason})")

    def set_paused(self, category: CouponType, paused: bool) -> None:
        self._reset_if_new_day()
        self._slots[CouponType(category)].paused = paused
        logger.info(f"{category.value} slot {'paused' if paused else 'resumed'}")

    def set_preferences(self, category: CouponType, preferences: list[str]) -> None:
        self._reset_if_new_day()
        self._slots[CouponType(category)].preferences = list(preferences)
        logger.info(f"{category.value} preferences set to {preferences or 'any'}")

    def status(self) -> dict:
        """Snapshot for the status endpoint."""
        self._reset_if_new_day()
        result = {
            "date": self._date.isoformat(),
            "test_mode": self.test_mode,
            "failed_today": len(self._failures),
        }
        for category, slot in self._slots.items():
            if slot.bought:
                label = "bought"
            elif slot.paused:
                label = "paused"
            elif not self.test_mode and self._past_cutoff(category):
                label = "skipped"
            else:
                label = "needed"
            result[category.value] = {"status": label, "preferences": slot.preferences or None}
        return result
