"""
Custom business exceptions for the negotiation API.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Consistent error handling across all API endpoints
HOW: Custom exception classes with error codes and messages
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ConversationNotFoundException(BusinessException):
    """Raised when a conversation id is unknown to the engine."""

    def __init__(self, conversation_id: str):
        super().__init__(
            message=f"Conversation not found: {conversation_id}",
            code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id}
        )


class ConversationAlreadyTerminalException(BusinessException):
    """Raised when a manual override targets a finished conversation."""

    def __init__(self, conversation_id: str, error: str):
        super().__init__(
            message=f"Conversation {conversation_id} is {error}",
            code="CONVERSATION_ALREADY_TERMINAL",
            details={"conversation_id": conversation_id, "error": error}
        )


class CheckpointNotPendingException(BusinessException):
    """Raised when resolving a checkpoint that is not awaiting a decision."""

    def __init__(self, conversation_id: str, kind: str):
        super().__init__(
            message=f"No pending {kind} checkpoint for conversation {conversation_id}",
            code="CHECKPOINT_NOT_PENDING",
            details={"conversation_id": conversation_id, "kind": kind}
        )


class ValidationException(BusinessException):
    """Raised for validation errors."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )
