"""
Conversation endpoints.

WHAT: Dashboard listing, message logs, checkpoint decisions and manual overrides
WHY: The operator approves purchases and payments and can force outcomes
HOW: Thin wrappers over NegotiationEngine; business errors map via error_handler
"""

from fastapi import APIRouter, Depends

from ..deps import get_runtime
from ....core.container import Runtime
from ....models.api_schemas import (
    CheckpointDecisionRequest,
    CheckpointDecisionResponse,
    ConversationListResponse,
    ConversationView,
    FailRequest,
    MessagesResponse,
    ResultResponse,
)
from ....models.conversation import CheckpointKind, Result
from ....utils.exceptions import (
    CheckpointNotPendingException,
    ConversationAlreadyTerminalException,
    ConversationNotFoundException,
)
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _raise_for_result(conversation_id: str, result: Result) -> ResultResponse:
    if not result.success and result.error:
        if "not found" in result.error:
            raise ConversationNotFoundException(conversation_id)
        raise ConversationAlreadyTerminalException(conversation_id, result.error.replace("Conversation ", ""))
    return ResultResponse(success=result.success, error=result.error)


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(runtime: Runtime = Depends(get_runtime)):
    """
    Conversations worth showing on the dashboard.

    Non-terminal ones plus those finished within the visibility window,
    most recently updated first.
    """
    visible = runtime.engine.list_visible()
    return ConversationListResponse(
        conversations=[ConversationView.from_conversation(c) for c in visible],
        total=len(visible),
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessagesResponse)
async def conversation_messages(conversation_id: str, runtime: Runtime = Depends(get_runtime)):
    return MessagesResponse(
        conversation_id=conversation_id,
        messages=runtime.engine.messages_of(conversation_id),
    )


@router.post(
    "/conversations/{conversation_id}/checkpoints/{kind}",
    response_model=CheckpointDecisionResponse,
)
async def resolve_checkpoint(
    conversation_id: str,
    kind: CheckpointKind,
    request: CheckpointDecisionRequest,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Decide a pending operator checkpoint.

    WHAT: Approve/decline the purchase, or assert/deny the payment
    WHY: The same decision may also arrive by chat reply or timeout
    HOW: First resolution wins; later ones get 409
    """
    resolved = runtime.engine.resolve_checkpoint(conversation_id, kind, request.value)
    if not resolved:
        raise CheckpointNotPendingException(conversation_id, kind.value)
    logger.info(f"{kind.value} checkpoint for {conversation_id} decided via API: {request.value}")
    return CheckpointDecisionResponse(conversation_id=conversation_id, kind=kind.value, resolved=True)


@router.post("/conversations/{conversation_id}/complete", response_model=ResultResponse)
async def force_complete(conversation_id: str, runtime: Runtime = Depends(get_runtime)):
    result = await runtime.engine.force_complete(conversation_id)
    return _raise_for_result(conversation_id, result)


@router.post("/conversations/{conversation_id}/fail", response_model=ResultResponse)
async def force_fail(
    conversation_id: str,
    request: FailRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
):
    reason = request.reason if request else None
    result = await runtime.engine.force_fail(conversation_id, reason)
    return _raise_for_result(conversation_id, result)
