import json
import re
from dataclasses import dataclass

from agentcore.logging_config import get_logger
from agentcore.services.llm.base import LLMProvider

logger = get_logger("sentiment_service")

SENTIMENT_PROMPT = """Rate the sentiment of the customer's message.
Answer with JSON only: {{"sentiment": "positive|neutral|negative", "score": <number between -1 and 1>}}

Message: {message}"""

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass
class Sentiment:
    label: str
    score: float


NEUTRAL = Sentiment("neutral", 0.0)


def _label_for(score: float) -> str:
    if score > 0.2:
        return "positive"
    if score < -0.2:
        return "negative"
    return "neutral"


def parse_sentiment(raw: str) -> Sentiment:
    """Read a score in [-1, 1] from model output; unreadable output is neutral."""
    text = (raw or "").strip()
    score = None
    try:
        data = json.loads(text)
        if isinstance(data, dict) and data.get("score") is not None:
            score = float(data["score"])
        elif isinstance(data, (int, float)) and not isinstance(data, bool):
            score = float(data)
    except (ValueError, TypeError):
        match = _NUMBER.search(text)
        if match:
            score = float(match.group())
    if score is None:
        return NEUTRAL
    score = max(-1.0, min(1.0, score))
    return Sentiment(_label_for(score), score)


class SentimentAnalyzer:
    def __init__(self, llm: LLMProvider, model: str | None = None, timeout_seconds: float = 8.0):
        self.llm = llm
        self.model = model
        self.timeout_seconds = timeout_seconds

    def score(self, message: str) -> Sentiment:
        """Never raises; any failure scores neutral."""
        if not (message or "").strip():
            return NEUTRAL
        try:
            response = self.llm.generate(
                [{"role": "user", "content": SENTIMENT_PROMPT.format(message=message)}],
                model=self.model,
                temperature=0.0,
                max_tokens=50,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning(f"Sentiment analysis failed: {exc}")
            return NEUTRAL
        return parse_sentiment(response.content)
