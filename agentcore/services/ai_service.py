"""LLM fallback reply generation.

The model is asked for a JSON object. A strict parse yields a
``StructuredReply``; anything else becomes a ``RawReply`` carrying the raw
text. A failed call yields the apology reply with ``needs_human`` set.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from agentcore.logging_config import get_logger
from agentcore.models import Customer, Message
from agentcore.services.llm.base import LLMProvider

logger = get_logger("ai_service")

RAW_REPLY_CONFIDENCE = 0.6

APOLOGY_MESSAGE = (
    "Disculpa, estoy teniendo dificultades técnicas en este momento. "
    "Un miembro de nuestro equipo te atenderá en breve."
)

SYSTEM_PROMPT = """You are a sales assistant for an online store. Help customers find products,
answer questions about prices and availability, and guide them towards a purchase.
Never give medical advice. Reply in the customer's language."""

RESPONSE_FORMAT = """Reply with a JSON object only:
{
  "message": "text for the customer",
  "action": "optional: create_order | apply_discount | recommend_products | escalate | schedule_followup",
  "actionData": {},
  "needsHumanIntervention": false,
  "confidence": 0.0-1.0,
  "productRecommendations": ["SKU"],
  "nextSteps": ["..."]
}"""

INTENT_INSTRUCTIONS = {
    "greeting": "Greet the customer and ask how you can help.",
    "product_inquiry": "Describe the relevant products: specifications, uses and benefits.",
    "price_request": "Give clear prices and mention any available discount.",
    "purchase_intent": "Help complete the purchase: confirm items and quantities.",
    "support_request": "Help with the problem; escalate if it is complex.",
    "complaint": "Show empathy and look for a solution; escalate if needed.",
    "goodbye": "Say goodbye politely and offer future help.",
}


class StructuredReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str = Field(alias="message", min_length=1)
    action: Optional[str] = None
    action_data: dict[str, Any] = Field(default_factory=dict, alias="actionData")
    needs_human: bool = Field(default=False, alias="needsHumanIntervention")
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    product_recommendations: list[str] = Field(default_factory=list, alias="productRecommendations")
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    is_fallback: bool = Field(default=False, exclude=True)

    @field_validator("action_data", mode="before")
    @classmethod
    def _action_data_object(cls, value):
        # models sometimes send a bare string or null here
        return value if isinstance(value, dict) else {}

    @field_validator("product_recommendations", "next_steps", mode="before")
    @classmethod
    def _string_list(cls, value):
        if value is None:
            return []
        return [str(item) for item in value] if isinstance(value, list) else [str(value)]


@dataclass
class RawReply:
    text: str
    confidence: float = RAW_REPLY_CONFIDENCE
    needs_human: bool = False
    action: Optional[str] = None
    action_data: dict = field(default_factory=dict)
    product_recommendations: list = field(default_factory=list)
    next_steps: list = field(default_factory=list)
    is_fallback: bool = False


Reply = Union[StructuredReply, RawReply]


def apology_reply() -> StructuredReply:
    return StructuredReply(
        text=APOLOGY_MESSAGE,
        needs_human=True,
        confidence=0.0,
        next_steps=["Connect with a human agent"],
        is_fallback=True,
    )


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        stripped = stripped[3:-3].strip()
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()


def parse_reply(raw: str) -> Reply:
    """Strict JSON parse into StructuredReply, else the raw text as a RawReply."""
    text = (raw or "").strip()
    try:
        reply = StructuredReply.model_validate_json(_strip_code_fence(text))
    except PydanticValidationError:
        return RawReply(text=text)
    return reply


@dataclass
class ReplyContext:
    message: str
    intent: str
    customer: Optional[Customer] = None
    history: list[Message] = field(default_factory=list)
    catalog_items: list[dict] = field(default_factory=list)


def build_prompt(context: ReplyContext) -> list[dict]:
    lines = ["CONVERSATION CONTEXT:", f"- Detected intent: {context.intent}"]

    customer = context.customer
    if customer is not None:
        lines += [
            "",
            "CUSTOMER:",
            f"- Name: {customer.name or 'not provided'}",
            f"- Segment: {customer.segment or 'new'}",
            f"- Orders: {customer.order_count or 0}",
            f"- Total spent: {customer.lifetime_spend or 0} MXN",
        ]

    if context.catalog_items:
        lines += ["", "RELEVANT PRODUCTS:"]
        for item in context.catalog_items:
            lines.append(f"- {item.get('name')} (SKU: {item.get('sku')}) - {item.get('price')} MXN")

    lines += ["", INTENT_INSTRUCTIONS.get(context.intent, "Answer helpfully and professionally."), "", RESPONSE_FORMAT]

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "system", "content": "\n".join(lines)},
    ]
    for past in context.history:
        role = "user" if past.direction == "inbound" else "assistant"
        messages.append({"role": role, "content": past.content})
    messages.append({"role": "user", "content": context.message})
    return messages


class ReplyGenerator:
    def __init__(
        self,
        llm: LLMProvider,
        commerce=None,
        model: Optional[str] = None,
        timeout_seconds: float = 20.0,
        catalog_limit: int = 5,
    ):
        self.llm = llm
        self.commerce = commerce
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.catalog_limit = catalog_limit

    def find_catalog_items(self, message: str) -> list[dict]:
        """Products referenced by the message. Best effort: errors give an empty list."""
        if self.commerce is None or not message.strip():
            return []
        try:
            products = self.commerce.search_products(message, per_page=self.catalog_limit)
        except Exception as exc:
            logger.warning(f"Catalog lookup failed: {exc}")
            return []
        return [
            {"name": product.get("name"), "sku": product.get("sku"), "price": product.get("price")}
            for product in products[: self.catalog_limit]
        ]

    def generate(self, context: ReplyContext) -> Reply:
        if not context.catalog_items:
            context.catalog_items = self.find_catalog_items(context.message)

        started = time.monotonic()
        try:
            response = self.llm.generate(
                build_prompt(context),
                model=self.model,
                temperature=0.7,
                max_tokens=1000,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as exc:
            logger.error(
                f"Reply generation failed: {exc}",
                extra={"context": {"elapsed_ms": round((time.monotonic() - started) * 1000, 2)}},
            )
            return apology_reply()

        if not response.content.strip():
            logger.warning("Reply generation returned empty content")
            return apology_reply()

        reply = parse_reply(response.content)
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "reply_llm_ms",
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "structured": isinstance(reply, StructuredReply),
                }
            },
        )
        return reply
