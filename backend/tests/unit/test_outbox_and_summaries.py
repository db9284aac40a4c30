"""
Unit tests for the outbox transport, operator summaries, phrasing and config.

WHAT: Queued outgoing traffic, attachment scans, summary text, settings helpers
WHY: These are the operator's only view of what the engine did
HOW: Direct calls against plain objects
"""

from datetime import datetime, timedelta

import pytest

from couponbot.core.config import Settings
from couponbot.models.conversation import Conversation, ConversationState, CouponType
from couponbot.nlu.phraser import TemplatePhraser
from couponbot.services.outbox_transport import OutboxTransport
from couponbot.services.summary_service import (
    format_failure_summary,
    format_follow_up_exhausted,
    format_purchase_request,
    format_success_caption,
)


def _conversation(**fields):
    values = dict(
        counterparty_id="919876543210@c.us",
        counterparty_name="Rahul",
        category=CouponType.DINNER,
        sub_category="SGR",
        payment_identifier="rahul@okaxis",
    )
    values.update(fields)
    return Conversation(**values)


@pytest.mark.unit
class TestOutboxTransport:
    """Test the in-process transport."""

    @pytest.mark.asyncio
    async def test_messages_queued_per_recipient(self):
        transport = OutboxTransport()

        await transport.send("a@c.us", "hi")
        await transport.notify_operator("summary")
        await transport.request_out_of_band_alert("operator")

        assert [m.text for m in transport.messages("a@c.us")] == ["hi"]
        operator = transport.messages("operator")
        assert [m.kind for m in operator] == ["text", "alert"]

    @pytest.mark.asyncio
    async def test_attachments_flagged(self):
        transport = OutboxTransport()

        await transport.notify_operator_attachment(b"img", "caption")
        await transport.send_attachment("a@c.us", b"img", "here")

        assert all(m.has_attachment and m.kind == "attachment" for m in transport.messages())

    @pytest.mark.asyncio
    async def test_drain_clears(self):
        transport = OutboxTransport()
        await transport.send("a@c.us", "hi")

        drained = transport.drain()

        assert len(drained) == 1
        assert transport.messages() == []

    @pytest.mark.asyncio
    async def test_outbox_bounded(self):
        transport = OutboxTransport(max_messages=2)
        for text in ("1", "2", "3"):
            await transport.send("a@c.us", text)

        assert [m.text for m in transport.messages()] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_recent_attachments_newest_first_since(self):
        transport = OutboxTransport()
        now = datetime.now()
        transport.record_inbound_attachment("a@c.us", b"old", received_at=now - timedelta(hours=1))
        transport.record_inbound_attachment("a@c.us", b"mid", received_at=now - timedelta(minutes=2))
        transport.record_inbound_attachment("a@c.us", b"new", received_at=now)

        recent = await transport.fetch_recent_attachments("a@c.us", 5, since=now - timedelta(minutes=10))

        assert recent == [b"new", b"mid"]
        assert await transport.fetch_recent_attachments("a@c.us", 1, since=now - timedelta(days=1)) == [b"new"]
        assert await transport.fetch_recent_attachments("b@c.us", 5, since=now) == []


@pytest.mark.unit
class TestSummaries:
    """Test operator-facing text."""

    def test_purchase_request(self):
        text = format_purchase_request(_conversation())

        assert text.startswith("COUPON PURCHASE CONFIRMATION")
        assert "Type: DINNER" in text
        assert "Mess: SGR" in text
        assert "UPI: rahul@okaxis" in text

    def test_success_caption_without_mess(self):
        text = format_success_caption(_conversation(sub_category=None, completed_at=datetime.now()))

        assert "COUPON PURCHASED!" in text
        assert "Mess:" not in text

    def test_failure_summary_refund_status(self):
        conversation = _conversation(
            state=ConversationState.FAILED,
            failure_reason="inactivity timeout",
            refund_requested=True,
        )

        assert "Refund: NOT received (Rs.70)" in format_failure_summary(conversation)

        conversation.refund_received = True
        assert "Refund: received (Rs.70)" in format_failure_summary(conversation)

    def test_failure_summary_without_refund(self):
        text = format_failure_summary(_conversation(failure_reason="price exceeded"))

        assert "Reason: price exceeded" in text
        assert "Refund" not in text

    def test_follow_up_exhausted(self):
        text = format_follow_up_exhausted(_conversation(follow_up_count=8))

        assert "after 8 attempts" in text


@pytest.mark.unit
class TestPhraser:
    """Test outgoing wording choices."""

    def test_follow_ups_escalate(self):
        phraser = TemplatePhraser()

        texts = [phraser.coupon_follow_up(n) for n in range(5)]

        assert len(set(texts[:4])) == 4
        assert texts[3] == texts[4]

    def test_opening_without_channel(self):
        text = TemplatePhraser().opening(CouponType.LUNCH, None, None)

        assert text == "hey, saw your message about the lunch coupon, still available?"

    def test_persuade_depends_on_payment(self):
        phraser = TemplatePhraser()

        assert "paid" in phraser.persuade(paid=True)
        assert "paid" not in phraser.persuade(paid=False)


@pytest.mark.unit
class TestSettings:
    """Test settings helpers."""

    def test_exempt_list_parsing(self):
        config = Settings(EXEMPT_COUNTERPARTIES=" a@c.us, b@c.us ,")

        assert config.get_exempt_counterparties() == {"a@c.us", "b@c.us"}
        assert config.is_exempt("a@c.us")
        assert not config.is_exempt("c@c.us")

    def test_list_values_accepted(self):
        config = Settings(CORS_ORIGINS=["http://a", "http://b"], EXEMPT_COUNTERPARTIES=["x@c.us"])

        assert config.get_cors_origins_list() == ["http://a", "http://b"]
        assert config.is_exempt("x@c.us")

    def test_defaults(self):
        config = Settings()

        assert config.FIXED_PRICE == 70
        assert config.PURCHASE_ESCALATION_SECONDS < config.PURCHASE_CONFIRMATION_TIMEOUT_SECONDS
