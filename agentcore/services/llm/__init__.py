from agentcore.services.llm.base import LLMProvider, LLMResponse
from agentcore.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
