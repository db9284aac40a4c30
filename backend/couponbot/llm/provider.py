"""
LLM provider protocol.

WHAT: Interface the NLU layer calls for classification prompts
WHY: Keep the classifier independent of the model server
HOW: typing.Protocol with async ping and generate
"""

from typing import Protocol

from .types import ChatMessage, LLMResult, ProviderStatus


class LLMProvider(Protocol):
    """Anything that can complete a chat prompt."""

    async def ping(self) -> ProviderStatus:
        ...

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        ...

    async def close(self) -> None:
        ...
