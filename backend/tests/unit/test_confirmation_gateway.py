"""
Unit tests for the human confirmation gateway and event dispatcher.

WHAT: First-wins resolution, timeouts, escalation, cancellation, serialized handlers
WHY: Operator decisions race chat replies, HTTP calls and timers
HOW: Real asyncio loop with short timers; continuations recorded in lists
"""

import asyncio

import pytest

from couponbot.models.conversation import CheckpointKind
from couponbot.services.confirmation_gateway import CheckpointResolution, HumanConfirmationGateway
from couponbot.services.dispatcher import EventDispatcher


@pytest.mark.unit
class TestEventDispatcher:
    """Test the single-worker event queue."""

    @pytest.mark.asyncio
    async def test_handlers_run_in_submission_order(self):
        dispatcher = EventDispatcher()
        seen = []

        async def record(value, delay):
            await asyncio.sleep(delay)
            seen.append(value)

        dispatcher.submit(record, "first", 0.02)
        dispatcher.submit(record, "second", 0)
        await dispatcher.join()

        assert seen == ["first", "second"]
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_worker(self):
        dispatcher = EventDispatcher()
        seen = []

        async def boom():
            raise RuntimeError("handler bug")

        async def record():
            seen.append("ok")

        dispatcher.submit(boom)
        dispatcher.submit(record)
        await dispatcher.join()

        assert seen == ["ok"]
        assert dispatcher.running
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_call_returns_after_earlier_events(self):
        dispatcher = EventDispatcher()
        seen = []

        async def record(value, delay):
            await asyncio.sleep(delay)
            seen.append(value)
            return value.upper()

        dispatcher.submit(record, "queued", 0.02)
        result = await dispatcher.call(record, "called", 0)

        assert result == "CALLED"
        assert seen == ["queued", "called"]
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_call_propagates_handler_error(self):
        dispatcher = EventDispatcher()

        async def boom():
            raise RuntimeError("handler bug")

        async def answer():
            return 42

        with pytest.raises(RuntimeError, match="handler bug"):
            await dispatcher.call(boom)

        assert await dispatcher.call(answer) == 42
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_events_enqueued_by_handlers_are_joined(self):
        dispatcher = EventDispatcher()
        seen = []

        async def inner():
            seen.append("inner")

        async def outer():
            seen.append("outer")
            dispatcher.submit(inner)

        dispatcher.submit(outer)
        await dispatcher.join()

        assert seen == ["outer", "inner"]
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_stop_and_join_without_start(self):
        dispatcher = EventDispatcher()

        await dispatcher.join()
        await dispatcher.stop()

        assert not dispatcher.running


@pytest.mark.unit
class TestHumanConfirmationGateway:
    """Test pending checkpoint registry."""

    @pytest.fixture
    def dispatcher(self):
        return EventDispatcher()

    @pytest.fixture
    def decisions(self):
        return []

    @pytest.fixture
    def on_decision(self, decisions):
        async def handler(conversation_id, resolution):
            decisions.append((conversation_id, resolution))
        return handler

    @pytest.mark.asyncio
    async def test_first_resolution_wins(self, dispatcher, decisions, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        future = gateway.request("c1", CheckpointKind.PURCHASE, on_decision, timeout=60)

        assert gateway.resolve("c1", CheckpointKind.PURCHASE, True) is True
        assert gateway.resolve("c1", CheckpointKind.PURCHASE, False) is False
        await dispatcher.join()

        assert future.result() == CheckpointResolution(value=True)
        assert decisions == [("c1", CheckpointResolution(value=True, timed_out=False))]
        assert not gateway.is_pending("c1", CheckpointKind.PURCHASE)
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_resolve_unknown_returns_false(self, dispatcher):
        gateway = HumanConfirmationGateway(dispatcher)

        assert gateway.resolve("nope", CheckpointKind.PAYMENT, True) is False

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        gateway.request("c1", CheckpointKind.PURCHASE, on_decision, timeout=60)

        assert gateway.resolve("c1", CheckpointKind.PAYMENT, True) is False
        assert gateway.pending_kinds("c1") == [CheckpointKind.PURCHASE]
        gateway.cancel("c1")

    @pytest.mark.asyncio
    async def test_string_kind_accepted(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        gateway.request("c1", "payment", on_decision, timeout=60)

        assert gateway.is_pending("c1", CheckpointKind.PAYMENT)
        assert gateway.resolve("c1", "payment", True) is True
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_duplicate_request_returns_existing_future(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        first = gateway.request("c1", CheckpointKind.PURCHASE, on_decision, timeout=60)
        second = gateway.request("c1", CheckpointKind.PURCHASE, on_decision, timeout=60)

        assert first is second
        gateway.cancel("c1")

    @pytest.mark.asyncio
    async def test_escalation_must_precede_timeout(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)

        async def escalate(conversation_id):
            pass

        with pytest.raises(ValueError):
            gateway.request(
                "c1", CheckpointKind.PURCHASE, on_decision,
                timeout=10, escalate_after=10, on_escalation=escalate,
            )
        assert not gateway.is_pending("c1", CheckpointKind.PURCHASE)

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_timeout_resolves_negative(self, dispatcher, decisions, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        gateway.request("c1", CheckpointKind.PAYMENT, on_decision, timeout=0.05)

        await asyncio.sleep(0.15)
        await dispatcher.join()

        assert decisions == [("c1", CheckpointResolution(value=False, timed_out=True))]
        assert gateway.resolve("c1", CheckpointKind.PAYMENT, True) is False
        await dispatcher.stop()

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_escalation_fires_before_timeout(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        order = []

        async def escalate(conversation_id):
            order.append(("escalated", conversation_id))

        async def decided(conversation_id, resolution):
            order.append(("decided", resolution.timed_out))

        gateway.request(
            "c1", CheckpointKind.PURCHASE, decided,
            timeout=0.1, escalate_after=0.03, on_escalation=escalate,
        )
        await asyncio.sleep(0.25)
        await dispatcher.join()

        assert order == [("escalated", "c1"), ("decided", True)]
        await dispatcher.stop()

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_resolution_cancels_escalation(self, dispatcher, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        escalations = []

        async def escalate(conversation_id):
            escalations.append(conversation_id)

        gateway.request(
            "c1", CheckpointKind.PURCHASE, on_decision,
            timeout=0.2, escalate_after=0.05, on_escalation=escalate,
        )
        gateway.resolve("c1", CheckpointKind.PURCHASE, True)
        await asyncio.sleep(0.1)
        await dispatcher.join()

        assert escalations == []
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_cancel_skips_continuation(self, dispatcher, decisions, on_decision):
        gateway = HumanConfirmationGateway(dispatcher)
        future = gateway.request("c1", CheckpointKind.PURCHASE, on_decision, timeout=60)
        gateway.request("c1", CheckpointKind.PAYMENT, on_decision, timeout=60)

        assert gateway.cancel("c1") == 2
        await dispatcher.join()

        assert future.cancelled()
        assert decisions == []
        assert gateway.pending_kinds("c1") == []
        assert gateway.resolve("c1", CheckpointKind.PURCHASE, True) is False
