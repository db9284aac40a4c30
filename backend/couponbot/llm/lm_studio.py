"""
LM Studio provider.

WHAT: Chat completions against a local LM Studio server
WHY: Reply classification stays on the operator's machine
HOW: Pooled httpx client, exponential-backoff retries on timeouts,
     refused connections and 5xx; reasoning blocks stripped from output
"""

import asyncio
import json
import re

import httpx

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

THINK_BLOCK_RE = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>\s*", re.DOTALL | re.IGNORECASE)
THINK_TAG_RE = re.compile(r"</?think(?:ing)?>\s*", re.IGNORECASE)


def strip_reasoning(text: str) -> str:
    """Remove <think> blocks some local models emit before the answer."""
    text = THINK_BLOCK_RE.sub("", text or "")
    return THINK_TAG_RE.sub("", text).strip()


class LMStudioProvider:
    """OpenAI-compatible client for LM Studio."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.base_url = (base_url or settings.LM_STUDIO_BASE_URL).rstrip("/")
        self.default_model = model or settings.LM_STUDIO_DEFAULT_MODEL
        self.timeout = timeout or settings.LM_STUDIO_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.LLM_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def ping(self) -> ProviderStatus:
        """
        Check that LM Studio answers and list its loaded models.

        Returns:
            ProviderStatus, never raises
        """
        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=5.0)
            response.raise_for_status()
            models = [m.get("id") for m in response.json().get("data", [])]
            return ProviderStatus(available=True, base_url=self.base_url, models=models or None)
        except httpx.TimeoutException:
            logger.warning("LM Studio ping timed out")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning("LM Studio not reachable")
            return ProviderStatus(
                available=False,
                base_url=self.base_url,
                error="Connection refused - is LM Studio running?",
            )
        except Exception as e:
            logger.error(f"LM Studio ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """
        Complete a chat prompt.

        Args:
            messages: System and user messages
            temperature: Sampling temperature
            max_tokens: Completion budget
            stop: Optional stop sequences
            model: Override of the configured model

        Returns:
            LLMResult with reasoning blocks removed

        Raises:
            ProviderTimeoutError: Every attempt timed out
            ProviderUnavailableError: Server refused every attempt
            ProviderResponseError: 4xx, repeated 5xx, or malformed body
        """
        model_to_use = model or self.default_model
        payload = {
            "model": model_to_use,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if stop:
            payload["stop"] = stop

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()
                text = strip_reasoning(data["choices"][0]["message"]["content"])
                usage = data.get("usage", {})
                logger.debug(f"LM Studio generate ok ({data.get('model', model_to_use)}, {usage.get('total_tokens', '?')} tokens)")
                return LLMResult(text=text, usage=usage, model=data.get("model", model_to_use))

            except httpx.TimeoutException as e:
                logger.warning(f"LM Studio timeout (attempt {attempt + 1}/{self.max_retries})")
                if last_attempt:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e

            except httpx.ConnectError as e:
                logger.warning(f"LM Studio connection refused (attempt {attempt + 1}/{self.max_retries})")
                if last_attempt:
                    raise ProviderUnavailableError("LM Studio is not reachable") from e

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500:
                    raise ProviderResponseError(f"HTTP {status}: {e.response.text}") from e
                logger.warning(f"LM Studio server error {status} (attempt {attempt + 1}/{self.max_retries})")
                if last_attempt:
                    raise ProviderResponseError(f"Server error: {status}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                raise ProviderResponseError(f"Invalid response format: {e}") from e

            await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise ProviderResponseError("No attempts made")

    async def close(self) -> None:
        await self.client.aclose()
