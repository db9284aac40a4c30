"""
Inbound endpoints for the chat bridge.

WHAT: Accept counterparty messages, group messages and operator replies; expose the outbox
WHY: The chat client runs out of process and talks to the engine over HTTP
HOW: Events are enqueued on the engine's dispatcher and the request returns 202
"""

from fastapi import APIRouter, Depends, status

from ..deps import get_runtime
from ....core.container import Runtime
from ....models.api_schemas import (
    AcceptedResponse,
    InboundMessageRequest,
    InboundOfferRequest,
    OperatorReplyRequest,
    OutboxMessageView,
    OutboxResponse,
)
from ....models.conversation import GroupMessage
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/inbound/messages", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def inbound_message(request: InboundMessageRequest, runtime: Runtime = Depends(get_runtime)):
    """
    Queue a direct-chat message.

    Attachments are also remembered by the transport so a later
    reconciliation scan can find them.
    """
    attachment = request.attachment_bytes()
    if request.from_operator:
        runtime.engine.submit_operator_chat_message(request.counterparty_id, request.text)
        return AcceptedResponse()

    if attachment is not None:
        runtime.transport.record_inbound_attachment(request.counterparty_id, attachment)
    runtime.engine.submit_counterparty_message(request.counterparty_id, request.text, attachment)
    return AcceptedResponse()


@router.post("/inbound/offers", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def inbound_offer(request: InboundOfferRequest, runtime: Runtime = Depends(get_runtime)):
    runtime.engine.submit_group_message(GroupMessage(**request.model_dump()))
    return AcceptedResponse()


@router.post("/inbound/operator-replies")
async def operator_reply(request: OperatorReplyRequest, runtime: Runtime = Depends(get_runtime)):
    """Apply an ok / no / paid style reply to the active conversation."""
    return {"resolved": runtime.engine.handle_operator_reply(request.text)}


@router.get("/outbox", response_model=OutboxResponse)
async def outbox(drain: bool = False, runtime: Runtime = Depends(get_runtime)):
    """Queued outgoing messages for the bridge to deliver; drain=true clears them."""
    messages = runtime.transport.drain() if drain else runtime.transport.messages()
    return OutboxResponse(messages=[
        OutboxMessageView(recipient=m.recipient, text=m.text, kind=m.kind, created_at=m.created_at)
        for m in messages
    ])
