"""
Types shared by LLM providers.

WHAT: Message shape, generation result, health status and provider errors
WHY: The NLU layer catches one family of errors regardless of backend
HOW: TypedDict for chat messages, dataclasses for results, plain exceptions
"""

from dataclasses import dataclass
from typing import Literal, TypedDict


# OpenAI-style chat message
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)


@dataclass
class LLMResult:
    """Completed generation."""
    text: str
    usage: dict
    model: str


@dataclass
class ProviderStatus:
    """Reachability of the configured model server."""
    available: bool
    base_url: str
    models: list[str] | None = None
    error: str | None = None


class ProviderTimeoutError(Exception):
    """Model server did not answer in time."""


class ProviderUnavailableError(Exception):
    """Model server refused the connection."""


class ProviderResponseError(Exception):
    """Model server answered with an error or an unreadable body."""
