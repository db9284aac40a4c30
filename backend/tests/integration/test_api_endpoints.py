"""
Integration tests for the HTTP API.

WHAT: Full purchase through inbound endpoints and checkpoint decisions, error mapping
WHY: The chat bridge and the operator dashboard only see this surface
HOW: FastAPI TestClient with the real lifespan (SQLite, keyword NLU, outbox transport);
     inbound events are processed asynchronously, so state is polled
"""

import base64
import time

import pytest
from fastapi.testclient import TestClient

from couponbot.core import models  # noqa: F401
from couponbot.core.database import Base, engine as db_engine
from couponbot.main import app

from fixtures.fakes import SELLER_ID, SELLER_NAME

UPI_ID = "rahul@okaxis"


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.05):
    """Poll until predicate() is truthy; return its value."""
    deadline = time.monotonic() + timeout
    while True:
        value = predicate()
        if value:
            return value
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(interval)


def only_conversation(client):
    body = client.get("/api/v1/conversations").json()
    return body["conversations"][0] if body["total"] == 1 else None


def in_state(client, state):
    def check():
        conversation = only_conversation(client)
        return conversation if conversation and conversation["state"] == state else None
    return check


def outbox_texts(client, recipient):
    messages = client.get("/api/v1/outbox").json()["messages"]
    return [m["text"] for m in messages if m["recipient"] == recipient]


def post_offer(client, text="selling lunch coupon prism"):
    return client.post("/api/v1/inbound/offers", json={
        "sender_id": SELLER_ID,
        "sender_name": SELLER_NAME,
        "text": text,
        "channel_name": "Mess Coupons",
    })


def post_message(client, text="", attachment=None):
    payload = {"counterparty_id": SELLER_ID, "text": text}
    if attachment is not None:
        payload["attachment_base64"] = base64.b64encode(attachment).decode()
    return client.post("/api/v1/inbound/messages", json=payload)


@pytest.fixture
def client():
    """TestClient over an empty database."""
    Base.metadata.drop_all(bind=db_engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.api
@pytest.mark.integration
class TestPurchaseFlow:
    """Offer to completed purchase over HTTP."""

    def test_full_purchase(self, client):
        assert post_offer(client).status_code == 202
        conversation = wait_for(in_state(client, "awaiting_payment_info"))
        conversation_id = conversation["id"]
        assert conversation["sub_category"] == "Prism"

        assert post_message(client, UPI_ID).status_code == 202
        wait_for(in_state(client, "payment_pending"))

        response = client.post(
            f"/api/v1/conversations/{conversation_id}/checkpoints/purchase", json={"value": True}
        )
        assert response.status_code == 200
        assert response.json() == {"conversation_id": conversation_id, "kind": "purchase", "resolved": True}

        again = client.post(
            f"/api/v1/conversations/{conversation_id}/checkpoints/purchase", json={"value": False}
        )
        assert again.status_code == 409
        assert again.json()["error"] == "CHECKPOINT_NOT_PENDING"

        wait_for(lambda: any(t.startswith("Pay Rs.70") for t in outbox_texts(client, "operator")))
        response = client.post(
            f"/api/v1/conversations/{conversation_id}/checkpoints/payment", json={"value": True}
        )
        assert response.status_code == 200
        wait_for(in_state(client, "awaiting_coupon"))
        assert f"sent 70 to {UPI_ID}, please send the coupon" in outbox_texts(client, SELLER_ID)

        assert post_message(client, attachment=b"\xff\xd8coupon").status_code == 202
        done = wait_for(in_state(client, "completed"))
        assert done["completed_at"] is not None
        assert done["payment_confirmed"] is True

        messages = client.get(f"/api/v1/conversations/{conversation_id}/messages").json()["messages"]
        assert messages[-1]["text"] == "got it, thanks!"
        assert any(m["has_attachment"] for m in messages)

        assert client.get("/api/v1/eligibility").json()["lunch"]["status"] == "bought"

        override = client.post(f"/api/v1/conversations/{conversation_id}/complete")
        assert override.status_code == 409
        assert override.json()["error"] == "CONVERSATION_ALREADY_TERMINAL"

    def test_operator_chat_replies(self, client):
        post_offer(client)
        wait_for(in_state(client, "awaiting_payment_info"))
        post_message(client, UPI_ID)
        wait_for(in_state(client, "payment_pending"))

        assert client.post("/api/v1/inbound/operator-replies", json={"text": "ok"}).json() == {"resolved": True}
        wait_for(lambda: any(t.startswith("Pay Rs.70") for t in outbox_texts(client, "operator")))
        assert client.post("/api/v1/inbound/operator-replies", json={"text": "paid"}).json() == {"resolved": True}

        wait_for(in_state(client, "awaiting_coupon"))

    def test_operator_reply_without_active_conversation(self, client):
        response = client.post("/api/v1/inbound/operator-replies", json={"text": "ok"})

        assert response.json() == {"resolved": False}

    def test_operator_typed_withdrawal(self, client):
        post_offer(client)
        wait_for(in_state(client, "awaiting_payment_info"))

        response = client.post("/api/v1/inbound/messages", json={
            "counterparty_id": SELLER_ID, "text": "nvm got one", "from_operator": True,
        })

        assert response.status_code == 202
        failed = wait_for(in_state(client, "failed"))
        assert failed["failure_reason"] == "operator cancelled"

    def test_conversation_resumes_after_restart(self):
        Base.metadata.drop_all(bind=db_engine)
        with TestClient(app) as first:
            post_offer(first)
            wait_for(in_state(first, "awaiting_payment_info"))

        with TestClient(app) as second:
            resumed = wait_for(in_state(second, "awaiting_payment_info"))
            assert resumed["counterparty_id"] == SELLER_ID
            assert "great, what's your UPI id? I'll send the money" in outbox_texts(second, SELLER_ID)


@pytest.mark.api
@pytest.mark.integration
class TestOverrides:
    """Manual complete/fail."""

    def test_force_fail_with_reason(self, client):
        post_offer(client)
        conversation = wait_for(in_state(client, "awaiting_payment_info"))

        response = client.post(
            f"/api/v1/conversations/{conversation['id']}/fail", json={"reason": "bought at the counter"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "error": None}
        failed = only_conversation(client)
        assert failed["state"] == "failed"
        assert failed["failure_reason"] == "bought at the counter"
        assert client.get("/api/v1/eligibility").json()["failed_today"] == 1

    def test_force_fail_without_body(self, client):
        post_offer(client)
        conversation = wait_for(in_state(client, "awaiting_payment_info"))

        response = client.post(f"/api/v1/conversations/{conversation['id']}/fail")

        assert response.status_code == 200
        assert only_conversation(client)["failure_reason"] == "manually failed by operator"

    def test_force_complete(self, client):
        post_offer(client)
        conversation = wait_for(in_state(client, "awaiting_payment_info"))

        response = client.post(f"/api/v1/conversations/{conversation['id']}/complete")

        assert response.json()["success"] is True
        assert only_conversation(client)["state"] == "completed"


@pytest.mark.api
@pytest.mark.integration
class TestErrors:
    """Error mapping."""

    def test_unknown_conversation_messages(self, client):
        response = client.get("/api/v1/conversations/nope/messages")

        assert response.status_code == 404
        assert response.json()["error"] == "CONVERSATION_NOT_FOUND"

    def test_unknown_conversation_checkpoint(self, client):
        response = client.post("/api/v1/conversations/nope/checkpoints/payment", json={"value": True})

        assert response.status_code == 404

    def test_unknown_conversation_override(self, client):
        assert client.post("/api/v1/conversations/nope/complete").status_code == 404
        assert client.post("/api/v1/conversations/nope/fail").status_code == 404

    def test_invalid_checkpoint_kind(self, client):
        response = client.post("/api/v1/conversations/nope/checkpoints/refund", json={"value": True})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_invalid_attachment(self, client):
        response = client.post("/api/v1/inbound/messages", json={
            "counterparty_id": SELLER_ID, "attachment_base64": "not base64!!",
        })

        assert response.status_code == 400

    def test_missing_fields(self, client):
        response = client.post("/api/v1/inbound/offers", json={"sender_id": SELLER_ID})

        assert response.status_code == 400


@pytest.mark.api
@pytest.mark.integration
class TestStatusEndpoints:
    """Health, eligibility controls and the outbox."""

    def test_root(self, client):
        body = client.get("/").json()

        assert body["status"] == "running"

    def test_health(self, client):
        body = client.get("/api/v1/health").json()

        assert body["status"] == "healthy"
        assert body["components"]["database"]["available"] is True
        assert body["components"]["nlu"]["backend"] == "keyword"
        assert body["components"]["engine"]["dispatcher_running"] is True
        assert body["components"]["engine"]["active_conversation"] is None

    def test_preferences_and_pause(self, client):
        response = client.put("/api/v1/eligibility/preferences", json={
            "category": "dinner", "sub_categories": ["SGR"], "paused": True,
        })

        assert response.status_code == 200
        assert response.json()["dinner"] == {"status": "paused", "preferences": ["SGR"]}

    def test_paused_category_ignores_offers(self, client):
        client.put("/api/v1/eligibility/preferences", json={"category": "lunch", "paused": True})

        post_offer(client)
        time.sleep(0.2)

        assert client.get("/api/v1/conversations").json()["total"] == 0

    def test_outbox_drain(self, client):
        post_offer(client)
        wait_for(lambda: outbox_texts(client, SELLER_ID))

        drained = client.get("/api/v1/outbox", params={"drain": True}).json()["messages"]

        assert drained[0]["recipient"] == SELLER_ID
        assert drained[0]["kind"] == "text"
        assert client.get("/api/v1/outbox").json()["messages"] == []
