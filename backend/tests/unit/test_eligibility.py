"""
Unit tests for daily eligibility.

WHAT: Cutoffs, once-per-day limit, pause, preferences and day rollover
WHY: The engine asks this oracle before every new negotiation
HOW: Injected clock so cutoffs and date changes are deterministic
"""

from datetime import datetime

import pytest

from couponbot.models.conversation import CouponType
from couponbot.services.eligibility import DailyEligibility

from fixtures.fakes import make_config


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0))


@pytest.fixture
def eligibility(clock):
    config = make_config(LUNCH_CUTOFF="14:10", DINNER_CUTOFF="21:10")
    return DailyEligibility(config=config, clock=clock)


@pytest.mark.unit
class TestDailyEligibility:
    """Test the per-day slot tracker."""

    def test_open_before_cutoff(self, eligibility):
        assert eligibility.can_start_category(CouponType.LUNCH)
        assert eligibility.can_start_category(CouponType.DINNER)

    def test_closed_after_cutoff(self, eligibility, clock):
        clock.now = datetime(2026, 3, 2, 14, 10)

        assert not eligibility.can_start_category(CouponType.LUNCH)
        assert eligibility.can_start_category(CouponType.DINNER)
        assert eligibility.status()["lunch"]["status"] == "skipped"

    def test_once_per_day(self, eligibility):
        eligibility.mark_fulfilled(CouponType.LUNCH, "c1")

        assert not eligibility.can_start_category(CouponType.LUNCH)
        assert eligibility.status()["lunch"]["status"] == "bought"

    def test_new_day_resets(self, eligibility, clock):
        eligibility.mark_fulfilled(CouponType.LUNCH, "c1")
        eligibility.set_paused(CouponType.DINNER, True)

        clock.now = datetime(2026, 3, 3, 9, 0)

        assert eligibility.can_start_category(CouponType.LUNCH)
        assert eligibility.can_start_category(CouponType.DINNER)
        assert eligibility.status()["date"] == "2026-03-03"

    def test_pause_and_resume(self, eligibility):
        eligibility.set_paused(CouponType.DINNER, True)
        assert not eligibility.can_start_category(CouponType.DINNER)
        assert eligibility.status()["dinner"]["status"] == "paused"

        eligibility.set_paused(CouponType.DINNER, False)
        assert eligibility.can_start_category(CouponType.DINNER)

    def test_preferences(self, eligibility):
        assert eligibility.accepted_sub_categories(CouponType.LUNCH) is None

        eligibility.set_preferences(CouponType.LUNCH, ["Prism", "SGR"])

        assert eligibility.accepted_sub_categories(CouponType.LUNCH) == ["Prism", "SGR"]
        assert eligibility.accepted_sub_categories(CouponType.DINNER) is None
        assert eligibility.status()["lunch"]["preferences"] == ["Prism", "SGR"]

    def test_empty_preferences_mean_any(self, eligibility):
        eligibility.set_preferences(CouponType.LUNCH, ["Prism"])
        eligibility.set_preferences(CouponType.LUNCH, [])

        assert eligibility.accepted_sub_categories(CouponType.LUNCH) is None

    def test_test_mode_ignores_cutoff_and_limit(self, clock):
        clock.now = datetime(2026, 3, 2, 23, 0)
        eligibility = DailyEligibility(config=make_config(LUNCH_CUTOFF="14:10"), test_mode=True, clock=clock)
        eligibility.mark_fulfilled(CouponType.LUNCH, "c1")

        assert eligibility.can_start_category(CouponType.LUNCH)

    def test_test_mode_still_honours_pause(self, clock):
        eligibility = DailyEligibility(config=make_config(), test_mode=True, clock=clock)
        eligibility.set_paused(CouponType.LUNCH, True)

        assert not eligibility.can_start_category(CouponType.LUNCH)

    def test_empty_cutoff_disables(self, clock):
        clock.now = datetime(2026, 3, 2, 23, 59)
        eligibility = DailyEligibility(config=make_config(), clock=clock)

        assert eligibility.can_start_category(CouponType.LUNCH)
        assert eligibility.status()["lunch"]["status"] == "needed"

    def test_failures_counted_per_day(self, eligibility, clock):
        eligibility.record_failure("c1", "price exceeded")
        eligibility.record_failure("c2", "operator cancelled")

        assert eligibility.status()["failed_today"] == 2
        assert eligibility.can_start_category(CouponType.LUNCH)

        clock.now = datetime(2026, 3, 3, 9, 0)

        assert eligibility.status()["failed_today"] == 0
