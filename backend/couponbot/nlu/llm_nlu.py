"""
LLM-backed NLU.

WHAT: NLU protocol implementation that consults an LLM for ambiguous messages
WHY: Free-form replies ("bro I'll give it for 60 if you pay now") defeat keyword rules
HOW: Keyword pre-checks first; JSON prompts to the provider otherwise;
     any provider or parse error falls back to the keyword result
"""

import json
import re
from typing import Any, Dict, Optional

from ..core.config import settings
from ..llm.provider import LLMProvider
from ..llm.types import ProviderResponseError, ProviderTimeoutError, ProviderUnavailableError
from ..models.conversation import CouponType
from ..models.nlu import Detection, OfferClassification, ReplyAnalysis
from .keyword_nlu import (
    KeywordNLU,
    MAX_PLAUSIBLE_PRICE,
    MIN_PLAUSIBLE_PRICE,
    NOT_AVAILABLE_PATTERNS,
)
from .prompts import (
    OFFER_DETECTION_PROMPT,
    REPLY_ANALYSIS_PROMPT,
    USER_CANCELLATION_PROMPT,
    render_classification_prompt,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

PROVIDER_ERRORS = (ProviderTimeoutError, ProviderUnavailableError, ProviderResponseError)

DEFAULT_CLARIFICATION = "sorry didn't get that, is the coupon still available?"


def parse_json_block(text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first JSON object from model output.

    Args:
        text: Raw LLM response

    Returns:
        Parsed dict or None if no valid object found
    """
    if not text:
        return None
    cleaned = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE)
    match = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in LLM response: {e}")
        return None
    return data if isinstance(data, dict) else None


def _is_conclusive(analysis: ReplyAnalysis) -> bool:
    return (
        analysis.use_same_number
        or analysis.availability is not None
        or analysis.payment_identifier is not None
        or analysis.phone_number is not None
        or analysis.asks_to_wait
        or analysis.is_acknowledgment
    )


class LLMNLU:
    """LLM-assisted NLU with keyword fallback."""

    def __init__(self, provider: LLMProvider, fallback: Optional[KeywordNLU] = None):
        self.provider = provider
        self.fallback = fallback or KeywordNLU()

    async def _ask(self, system_prompt: str, text: str) -> Optional[Dict[str, Any]]:
        try:
            result = await self.provider.generate(
                render_classification_prompt(system_prompt, text),
                temperature=settings.LLM_DEFAULT_TEMPERATURE,
                max_tokens=settings.LLM_DEFAULT_MAX_TOKENS,
            )
        except PROVIDER_ERRORS as e:
            logger.warning(f"LLM classification unavailable, using keyword rules: {e}")
            return None
        data = parse_json_block(result.text)
        if data is None:
            logger.warning(f"Could not parse LLM classification: {result.text[:100]}")
        return data

    async def classify_offer(self, text: str) -> OfferClassification:
        data = await self._ask(OFFER_DETECTION_PROMPT, text)
        if data is None:
            return await self.fallback.classify_offer(text)

        category = data.get("category")
        try:
            category = CouponType(category) if category else None
        except ValueError:
            category = None
        return OfferClassification(
            is_offer=bool(data.get("isOffer")) and category is not None,
            category=category,
            confidence=float(data.get("confidence") or 0.0),
        )

    async def classify_counterparty_reply(self, text: str) -> ReplyAnalysis:
        """
        Interpret a counterparty reply.

        WHAT: Structured reading of availability, price, payment details
        WHY: Ambiguity must become a clarification question, never a silent rejection
        HOW: Keyword analysis if conclusive; LLM otherwise; short "unavailable" verdicts
             without a keyword hit are downgraded to clarification
        """
        baseline = await self.fallback.classify_counterparty_reply(text)
        if _is_conclusive(baseline):
            return baseline

        data = await self._ask(REPLY_ANALYSIS_PROMPT, text)
        if data is None:
            return baseline

        price = data.get("price")
        if isinstance(price, (int, float)) and MIN_PLAUSIBLE_PRICE <= price <= MAX_PLAUSIBLE_PRICE:
            price = int(price)
        else:
            price = baseline.price

        available = data.get("available")
        needs_clarification = bool(data.get("needsClarification"))
        clarification = data.get("clarificationQuestion") or None

        lowered = text.lower().strip()
        if available is False and len(lowered) < 30 and not any(p in lowered for p in NOT_AVAILABLE_PATTERNS):
            logger.info("LLM said unavailable on a short ambiguous reply, asking instead")
            available = None
            needs_clarification = True

        if needs_clarification and not clarification:
            clarification = DEFAULT_CLARIFICATION

        return ReplyAnalysis(
            availability=available if isinstance(available, bool) else None,
            price=price,
            payment_identifier=data.get("upiId") or None,
            phone_number=data.get("phoneNumber") or None,
            agreement=data.get("agreesToSale") if isinstance(data.get("agreesToSale"), bool) else None,
            has_deliverable=bool(data.get("hasCoupon")) or baseline.has_deliverable,
            asks_to_wait=baseline.asks_to_wait,
            is_acknowledgment=baseline.is_acknowledgment,
            asks_payment_status=baseline.asks_payment_status,
            needs_clarification=needs_clarification,
            clarification_text=clarification if needs_clarification else None,
        )

    async def detect_withdrawal(self, text: str) -> Detection:
        return await self.fallback.detect_withdrawal(text)

    async def detect_refund_confirmation(self, text: str) -> Detection:
        return await self.fallback.detect_refund_confirmation(text)

    async def detect_user_withdrawal(self, text: str) -> bool:
        if await self.fallback.detect_user_withdrawal(text):
            return True
        data = await self._ask(USER_CANCELLATION_PROMPT, text)
        if data is None:
            return False
        return bool(data.get("isCancelling")) and float(data.get("confidence") or 0.0) > 0.6

    async def extract_sub_category(self, text: str) -> Optional[str]:
        return await self.fallback.extract_sub_category(text)
