"""
Keyword-based NLU.

WHAT: Pattern rules for classifying offers and counterparty replies
WHY: Most chat replies are short and formulaic; rules are instant and deterministic
HOW: Phrase lists (English + common Hinglish), regexes for UPI ids, phones and prices
"""

import re
from typing import Optional

from ..models.conversation import CouponType
from ..models.nlu import Detection, OfferClassification, ReplyAnalysis
from .sub_categories import match_sub_category
from ..utils.logger import get_logger

logger = get_logger(__name__)

WAIT_PATTERNS = [
    "hold on", "holdon", "wait", "one sec", "1 sec", "one min", "1 min",
    "sending", "will send", "ruk", "ruko", "ek min", "ek sec",
    "abhi bhejta", "bhej raha", "just a moment", "moment",
    "give me a sec", "give me a min", "coming", "on the way",
]

ACKNOWLEDGMENT_PATTERNS = {
    "ok", "okay", "k", "hm", "hmm", "ya", "ha", "haan", "sure", "alright", "fine", "theek",
}

SAME_NUMBER_PATTERNS = [
    "same number", "same no", "same num", "this number", "this no", "my number",
    "isi number", "yahi number", "gpay same", "phonepe same", "paytm same", "upi same",
    "whatsapp number", "whatsapp no", "wp number",
]

NOT_AVAILABLE_PATTERNS = [
    "sold", "not available", "nahi hai", "nhi hai", "khatam", "finished", "gone",
    "someone else took", "no more", "dont have", "don't have", "out of stock",
]

SELLER_CANCEL_PATTERNS = [
    "sorry", "cant sell", "can't sell", "cannot sell", "wont be able", "won't be able",
    "not selling", "changed my mind", "cancel", "need it myself", "keeping it",
    "decided to keep", "using it myself", "friend wants", "someone else", "gave it to",
    "already gave", "nahi dunga", "nahi de sakta", "nahi dena", "rehne do",
    "dont want to sell", "don't want to sell", "backing out",
]

REFUND_CONFIRMATION_PATTERNS = [
    "paid back", "refunded", "sent back", "returned", "refund done", "money sent",
    "payment sent", "sent the money", "transferred back", "wapas bhej diya",
    "refund kar diya", "paisa bhej diya", "done refund", "refund ho gaya", "sent it back",
]

SIMPLE_CONFIRMATIONS = {"sent", "done", "yes", "haan", "ha", "ok"}

AGREEMENT_PATTERNS = [
    "yes", "yeah", "yep", "yup", "ok", "okay", "sure", "done", "haan", "ha",
    "theek", "thik", "available", "hai",
]

USER_CANCEL_PATTERNS = [
    "already got", "got it from", "found another", "someone else", "cancel", "nvm",
    "nevermind", "never mind", "dont need", "don't need", "no need", "already arranged",
    "already have", "got one", "mil gaya", "kisi aur se", "friend se", "dost se",
]

PAYMENT_QUERY_PATTERNS = [
    "paid", "payment", "pay ", "done?", "sent?", "kiya", "bheja", "bheji", "money",
    "paisa", "paise",
]

DELIVERABLE_CLAIM_PATTERNS = [
    "sent the coupon", "sent coupon", "coupon sent", "sent it", "here it is", "check",
    "shared", "forwarded",
]

SELL_PATTERNS = ["selling", "sell", "for sale", "available", "anyone want", "giving away", "extra"]
BUY_PATTERNS = ["need", "want to buy", "looking for", "anyone selling", "buy", "wtb"]

UPI_RE = re.compile(r"[a-zA-Z0-9._-]+@[a-zA-Z]+")
PHONE_RE = re.compile(r"\b[6-9]\d{9}\b")
PRICE_RE = re.compile(
    r"(?:rs\.?|inr|₹)\s*(\d{2,3})\b|\b(\d{2,3})\s*(?:rs\b|rupees|/-|₹)|\bfor\s+(\d{2,3})\b",
    re.IGNORECASE,
)

MIN_PLAUSIBLE_PRICE = 20
MAX_PLAUSIBLE_PRICE = 150


def _normalize(text: str) -> str:
    return (text or "").lower().strip()


def _contains_any(text: str, patterns) -> list[str]:
    return [p for p in patterns if p in text]


def extract_price(text: str) -> Optional[int]:
    """Price mentioned with a currency marker, ignoring implausible values."""
    for match in PRICE_RE.finditer(text or ""):
        raw = next(group for group in match.groups() if group)
        price = int(raw)
        if MIN_PLAUSIBLE_PRICE <= price <= MAX_PLAUSIBLE_PRICE:
            return price
    return None


def is_short_acknowledgment(text: str) -> bool:
    lowered = _normalize(text)
    return len(lowered) <= 2 or lowered in ACKNOWLEDGMENT_PATTERNS


def is_wait_request(text: str) -> bool:
    return bool(_contains_any(_normalize(text), WAIT_PATTERNS))


def is_agreement(text: str) -> bool:
    lowered = _normalize(text)
    return any(
        lowered == p or lowered.startswith(p + " ") or lowered.endswith(" " + p)
        for p in AGREEMENT_PATTERNS
    )


class KeywordNLU:
    """Rule-based implementation of the NLU protocol."""

    async def classify_offer(self, text: str) -> OfferClassification:
        lowered = _normalize(text)
        if _contains_any(lowered, BUY_PATTERNS) and not _contains_any(lowered, ["selling", "sell "]):
            return OfferClassification(is_offer=False)

        category = None
        if "lunch" in lowered:
            category = CouponType.LUNCH
        elif "dinner" in lowered:
            category = CouponType.DINNER

        sell_hits = _contains_any(lowered, SELL_PATTERNS)
        if category is None or not (sell_hits or "coupon" in lowered):
            return OfferClassification(is_offer=False, category=category)

        confidence = min(0.6 + 0.1 * len(sell_hits) + (0.1 if "coupon" in lowered else 0.0), 1.0)
        return OfferClassification(is_offer=True, category=category, confidence=confidence)

    async def classify_counterparty_reply(self, text: str) -> ReplyAnalysis:
        lowered = _normalize(text)

        if _contains_any(lowered, SAME_NUMBER_PATTERNS):
            logger.debug("Same-number reply detected")
            return ReplyAnalysis(availability=True, agreement=True, use_same_number=True)

        upi_match = UPI_RE.search(text or "")
        phone_match = PHONE_RE.search(text or "")
        not_available = bool(_contains_any(lowered, NOT_AVAILABLE_PATTERNS))
        agreement = is_agreement(lowered) and not not_available
        has_payment_info = bool(upi_match or phone_match)

        if not_available and not has_payment_info:
            availability = False
        elif agreement or has_payment_info:
            availability = True
        else:
            availability = None

        return ReplyAnalysis(
            availability=availability,
            price=extract_price(text),
            payment_identifier=upi_match.group(0) if upi_match else None,
            phone_number=phone_match.group(0) if phone_match else None,
            agreement=True if (agreement or has_payment_info) else None,
            has_deliverable=bool(_contains_any(lowered, DELIVERABLE_CLAIM_PATTERNS)),
            asks_to_wait=is_wait_request(lowered),
            is_acknowledgment=is_short_acknowledgment(lowered),
            asks_payment_status=bool(_contains_any(lowered, PAYMENT_QUERY_PATTERNS)),
        )

    async def detect_withdrawal(self, text: str) -> Detection:
        matches = _contains_any(_normalize(text), SELLER_CANCEL_PATTERNS)
        if not matches:
            return Detection(flag=False)
        return Detection(flag=True, confidence=min(0.5 + 0.2 * len(matches), 1.0))

    async def detect_refund_confirmation(self, text: str) -> Detection:
        lowered = _normalize(text)
        matches = _contains_any(lowered, REFUND_CONFIRMATION_PATTERNS)
        if matches:
            return Detection(flag=True, confidence=min(0.6 + 0.2 * len(matches), 1.0))
        if lowered in SIMPLE_CONFIRMATIONS:
            return Detection(flag=True, confidence=0.6)
        return Detection(flag=False)

    async def detect_user_withdrawal(self, text: str) -> bool:
        return bool(_contains_any(_normalize(text), USER_CANCEL_PATTERNS))

    async def extract_sub_category(self, text: str) -> Optional[str]:
        return match_sub_category(text)
