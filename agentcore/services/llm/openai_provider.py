from typing import List, Optional

from agentcore.errors import GatewayError, ModelError
from agentcore.logging_config import get_logger
from agentcore.services.gateway import GatewayClient, RequestSpec
from agentcore.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions over the shared gateway."""

    def __init__(self, gateway: GatewayClient, default_model: str = "gpt-4.1-mini"):
        self.gateway = gateway
        self.default_model = default_model

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"LLM request: model={model}, messages_count={len(messages)}")

        try:
            data = self.gateway.call(
                RequestSpec(
                    "POST",
                    "/chat/completions",
                    operation="chat_completion",
                    json=payload,
                    deadline_seconds=timeout_seconds,
                )
            )
        except GatewayError as exc:
            raise ModelError(f"LLM call failed: {exc.message}") from exc

        if not isinstance(data, dict):
            raise ModelError("LLM returned a non-JSON body")

        content = ""
        choices = data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        logger.debug(f"LLM content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
