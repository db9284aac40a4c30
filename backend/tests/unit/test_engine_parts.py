"""
Unit tests for the engine's small stateful parts.

WHAT: Active slot, image reconciliation buffer, visibility filter, history truncation
WHY: These hold the single-active and no-lost-image guarantees
HOW: Direct calls, no event loop needed
"""

from datetime import datetime, timedelta

import pytest

from couponbot.core.negotiation_engine import phone_from_counterparty_id
from couponbot.models.conversation import Conversation, ConversationState, CouponType
from couponbot.services.active_slot import ActiveSlot
from couponbot.services.reconciliation_buffer import ImageReconciliationBuffer
from couponbot.services.visibility_filter import filter_visible, is_visible
from couponbot.utils.history_truncation import truncate_history


def _conversation(state=ConversationState.AWAITING_MESS_INFO, completed_at=None, updated_at=None):
    conversation = Conversation(
        counterparty_id="919876543210@c.us",
        counterparty_name="Rahul",
        category=CouponType.LUNCH,
        state=state,
        completed_at=completed_at,
    )
    if updated_at is not None:
        conversation.updated_at = updated_at
    return conversation


@pytest.mark.unit
class TestActiveSlot:
    """Test compare-and-set slot."""

    def test_claim_free_slot(self):
        slot = ActiveSlot()

        assert slot.is_free
        assert slot.claim("a") is True
        assert slot.holder == "a"

    def test_claim_is_reentrant(self):
        slot = ActiveSlot()
        slot.claim("a")

        assert slot.claim("a") is True

    def test_second_claimant_refused(self):
        slot = ActiveSlot()
        slot.claim("a")

        assert slot.claim("b") is False
        assert slot.holder == "a"

    def test_release_only_by_holder(self):
        slot = ActiveSlot()
        slot.claim("a")

        assert slot.release_if("b") is False
        assert slot.holder == "a"
        assert slot.release_if("a") is True
        assert slot.is_free
        assert slot.release_if("a") is False


@pytest.mark.unit
class TestImageReconciliationBuffer:
    """Test early attachment holding."""

    def test_take_consumes_once(self):
        buffer = ImageReconciliationBuffer()
        buffer.hold_early("c1", b"img")

        assert buffer.has_early("c1")
        assert buffer.take("c1") == b"img"
        assert buffer.take("c1") is None
        assert not buffer.has_early("c1")

    def test_newer_early_image_replaces_older(self):
        buffer = ImageReconciliationBuffer()
        buffer.hold_early("c1", b"old")
        buffer.hold_early("c1", b"new")

        assert buffer.take("c1") == b"new"

    def test_seen_log_is_cumulative(self):
        buffer = ImageReconciliationBuffer()
        buffer.record_seen("c1", b"a")
        buffer.record_seen("c1", b"b")
        buffer.hold_early("c1", b"b")
        buffer.take("c1")

        assert buffer.seen("c1") == [b"a", b"b"]

    def test_conversations_are_isolated(self):
        buffer = ImageReconciliationBuffer()
        buffer.hold_early("c1", b"img")

        assert buffer.take("c2") is None
        assert buffer.seen("c2") == []

    def test_clear(self):
        buffer = ImageReconciliationBuffer()
        buffer.hold_early("c1", b"img")
        buffer.record_seen("c1", b"img")

        buffer.clear("c1")

        assert not buffer.has_early("c1")
        assert buffer.seen("c1") == []


@pytest.mark.unit
class TestVisibilityFilter:
    """Test dashboard visibility window."""

    def test_active_always_visible(self):
        now = datetime.now()

        assert is_visible(_conversation(), now, 15)

    def test_recently_finished_visible(self):
        now = datetime.now()
        finished = _conversation(ConversationState.COMPLETED, completed_at=now - timedelta(seconds=10))

        assert is_visible(finished, now, 15)

    def test_old_finished_hidden(self):
        now = datetime.now()
        finished = _conversation(ConversationState.FAILED, completed_at=now - timedelta(seconds=16))

        assert not is_visible(finished, now, 15)

    def test_terminal_without_timestamp_hidden(self):
        assert not is_visible(_conversation(ConversationState.FAILED), datetime.now(), 15)

    def test_sorted_most_recent_first(self):
        now = datetime.now()
        older = _conversation(updated_at=now - timedelta(minutes=2))
        newer = _conversation(updated_at=now - timedelta(minutes=1))
        hidden = _conversation(ConversationState.COMPLETED, completed_at=now - timedelta(minutes=5))

        assert filter_visible([older, hidden, newer], 15, now=now) == [newer, older]


@pytest.mark.unit
class TestHistoryTruncation:
    """Test FIFO message eviction."""

    def test_under_limit_untouched(self):
        history = [1, 2, 3]

        assert truncate_history(history, 5) == [1, 2, 3]

    def test_oldest_evicted_in_place(self):
        history = list(range(10))

        result = truncate_history(history, 4)

        assert result is history
        assert history == [6, 7, 8, 9]

    def test_zero_limit_clears(self):
        history = [1, 2]

        assert truncate_history(history, 0) == []


@pytest.mark.unit
class TestPhoneFromCounterpartyId:
    """Test deriving a UPI-able phone number from a chat id."""

    def test_indian_country_code_stripped(self):
        assert phone_from_counterparty_id("919876543210@c.us") == "9876543210"

    def test_bare_ten_digits(self):
        assert phone_from_counterparty_id("9876543210@c.us") == "9876543210"

    def test_non_phone_id(self):
        assert phone_from_counterparty_id("12345@g.us") is None
