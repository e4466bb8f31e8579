import time
from enum import Enum

from agentcore.logging_config import get_logger
from agentcore.services.llm.base import LLMProvider

logger = get_logger("intent_service")


class Intent(str, Enum):
    GREETING = "greeting"
    PRODUCT_INQUIRY = "product_inquiry"
    PRICE_REQUEST = "price_request"
    PURCHASE_INTENT = "purchase_intent"
    SUPPORT_REQUEST = "support_request"
    COMPLAINT = "complaint"
    GOODBYE = "goodbye"
    OTHER = "other"


INTENT_LABELS = {intent.value for intent in Intent}

CLASSIFY_PROMPT = """Classify the customer's message. Answer with ONLY one label from this list:
greeting, product_inquiry, price_request, purchase_intent, support_request, complaint, goodbye, other

Message: {message}

Label:"""


def coerce_intent(raw: str) -> Intent:
    """Map model output to the closed label set; anything else is OTHER."""
    label = (raw or "").strip().strip(".\"'` ").lower()
    if label in INTENT_LABELS:
        return Intent(label)
    return Intent.OTHER


class IntentClassifier:
    def __init__(self, llm: LLMProvider, model: str | None = None, timeout_seconds: float = 8.0):
        self.llm = llm
        self.model = model
        self.timeout_seconds = timeout_seconds

    def classify(self, message: str) -> Intent:
        """Single-label classification. Never raises: failures become OTHER."""
        if not (message or "").strip():
            return Intent.OTHER

        started = time.monotonic()
        try:
            response = self.llm.generate(
                [{"role": "user", "content": CLASSIFY_PROMPT.format(message=message)}],
                model=self.model,
                temperature=0.0,
                max_tokens=10,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                f"Intent classification failed: {exc}",
                extra={"context": {"elapsed_ms": round((time.monotonic() - started) * 1000, 2)}},
            )
            return Intent.OTHER

        intent = coerce_intent(response.content)
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "intent_llm_ms",
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "intent": intent.value,
                }
            },
        )
        return intent
