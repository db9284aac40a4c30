"""
Prompt templates for LLM-backed classification.

WHAT: System prompts asking the model for strict JSON
WHY: Keyword rules miss long or unusual phrasings
HOW: Template strings rendered into ChatMessage lists
"""

from typing import List

from ..llm.types import ChatMessage

OFFER_DETECTION_PROMPT = """You read messages from a college mess-coupon trading group.
Decide whether the message is someone SELLING a meal coupon (not buying, not asking).

Respond with JSON only:
{"isOffer": true/false, "category": "lunch" | "dinner" | null, "confidence": 0.0-1.0}"""

REPLY_ANALYSIS_PROMPT = """You are helping a buyer who messaged a seller about a mess coupon.
Analyze the seller's latest reply.

Respond with JSON only:
{
  "available": true/false/null,
  "price": number or null,
  "upiId": string or null,
  "phoneNumber": string or null,
  "agreesToSale": true/false/null,
  "hasCoupon": true/false,
  "needsClarification": true/false,
  "clarificationQuestion": string or null
}

Use null when the reply does not say. Only set available=false when the seller
clearly says the coupon is gone. If the reply is ambiguous, set
needsClarification=true and write a short casual clarificationQuestion."""

USER_CANCELLATION_PROMPT = """The buyer typed a message into a chat with a coupon seller.
Decide whether the buyer is calling the purchase off (e.g. already got one elsewhere).

Respond with JSON only:
{"isCancelling": true/false, "confidence": 0.0-1.0}"""


def render_classification_prompt(system_prompt: str, text: str) -> List[ChatMessage]:
    """
    Build the message list for a single-shot classification.

    Args:
        system_prompt: One of the *_PROMPT templates
        text: Message to classify

    Returns:
        System + user messages
    """
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": f'Message: "{text}"'},
    ]
