"""
LLM provider factory.

WHAT: Returns the process-wide provider for the configured backend
WHY: One pooled HTTP client shared by every classification call
HOW: Lazy singleton keyed off settings.LLM_PROVIDER
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import LLMProvider

_provider_instance: "LLMProvider | None" = None


def get_provider() -> "LLMProvider":
    """
    Get the configured LLM provider singleton.

    Raises:
        ValueError: If LLM_PROVIDER does not name a model server
    """
    global _provider_instance

    if _provider_instance is None:
        # Imported lazily to avoid a config <-> llm import cycle
        from ..core.config import settings
        from ..utils.logger import get_logger

        logger = get_logger(__name__)
        provider_name = settings.LLM_PROVIDER

        if provider_name != "lm_studio":
            raise ValueError(f"LLM provider '{provider_name}' has no model server")

        from .lm_studio import LMStudioProvider
        _provider_instance = LMStudioProvider()
        logger.info(f"LLM provider initialized: {provider_name}")

    return _provider_instance


def reset_provider() -> None:
    """Drop the singleton (tests)."""
    global _provider_instance
    _provider_instance = None
