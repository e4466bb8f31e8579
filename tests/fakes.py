from decimal import Decimal
from typing import Optional

from agentcore.errors import GatewayError
from agentcore.models import Conversation, Customer
from agentcore.services.action_service import ActionExecutor
from agentcore.services.ai_service import ReplyGenerator
from agentcore.services.discount_service import DiscountIssuer
from agentcore.services.intent_service import IntentClassifier
from agentcore.services.llm.base import LLMProvider, LLMResponse
from agentcore.services.orchestrator import ResponseOrchestrator
from agentcore.services.sentiment_service import SentimentAnalyzer


class FakeLLM(LLMProvider):
    """Returns scripted completions in order; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses) or [""]
        self.calls: list[list[dict]] = []

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000, timeout_seconds=None):
        self.calls.append(messages)
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, model=model or "fake-model")


class FakeChat:
    """Records outgoing provider calls. ``fail_sends`` makes send_text raise GatewayError."""

    def __init__(self, fail_sends: bool = False):
        self.fail_sends = fail_sends
        self.sent: list[tuple[Optional[str], str, str]] = []
        self.control: list[tuple] = []

    def send_text(self, channel_id, to, message):
        if self.fail_sends:
            raise GatewayError("send_text", 4, RuntimeError("provider down"))
        self.sent.append((channel_id, to, message))
        return {"status": "sent"}

    def take_control(self, conversation_id, agent_id):
        self.control.append(("take", conversation_id, agent_id))
        return {}

    def release_control(self, conversation_id):
        self.control.append(("release", conversation_id))
        return {}

    def close_conversation(self, conversation_id, reason=None):
        self.control.append(("close", conversation_id, reason))
        return {}


class FakeCommerce:
    def __init__(self, products: Optional[list[dict]] = None, fail_orders: bool = False):
        self.products = products or []
        self.fail_orders = fail_orders
        self.orders: list[dict] = []
        self.coupons: list[dict] = []

    def search_products(self, query, per_page=5):
        return self.products[:per_page]

    def get_product_by_sku(self, sku):
        return next((product for product in self.products if product.get("sku") == sku), None)

    def create_order(self, order):
        if self.fail_orders:
            raise GatewayError("create_order", 1, RuntimeError("400 invalid product"))
        self.orders.append(order)
        return {"id": 1000 + len(self.orders), "total": "250.00", "currency": "MXN", "status": "pending"}

    def create_coupon(self, code, percent, expires_at=None, email=None):
        self.coupons.append({"code": code, "percent": percent, "expires_at": expires_at, "email": email})
        return {"id": len(self.coupons), "code": code}


def make_customer(db, **fields):
    fields.setdefault("order_count", 0)
    fields.setdefault("lifetime_spend", Decimal("0"))
    fields.setdefault("segment", "new")
    customer = Customer(**fields)
    db.add(customer)
    db.flush()
    return customer


def make_conversation(db, customer, ticket_id="T-1", **fields):
    conversation = Conversation(ticket_id=ticket_id, customer_id=customer.id, **fields)
    db.add(conversation)
    db.flush()
    return conversation


def make_orchestrator(
    session_factory,
    *,
    chat=None,
    commerce=None,
    queue=None,
    intent="other",
    sentiment='{"sentiment": "neutral", "score": 0}',
    replies=('{"message": "Con gusto te ayudo", "confidence": 0.85}',),
    sentiment_threshold=-0.7,
):
    discounts = DiscountIssuer(commerce)
    return ResponseOrchestrator(
        session_factory,
        chat,
        IntentClassifier(FakeLLM(intent)),
        SentimentAnalyzer(FakeLLM(sentiment)),
        ReplyGenerator(FakeLLM(*replies), commerce),
        ActionExecutor(commerce, discounts, queue),
        discounts=discounts,
        sentiment_threshold=sentiment_threshold,
    )
