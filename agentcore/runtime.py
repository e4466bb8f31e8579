"""Builds the long-lived service graph shared by routers and the queue worker."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from agentcore.config import Settings
from agentcore.database import SessionLocal
from agentcore.logging_config import get_logger
from agentcore.services.action_service import ActionExecutor
from agentcore.services.ai_service import ReplyGenerator
from agentcore.services.chat_provider import ChatProviderClient
from agentcore.services.commerce_client import CommerceClient
from agentcore.services.discount_service import DiscountIssuer
from agentcore.services.event_handlers import WebhookEventHandler, register_handlers
from agentcore.services.gateway import GatewayClient
from agentcore.services.intent_service import IntentClassifier
from agentcore.services.job_store import JobJournal
from agentcore.services.keyed_lock import KeyedLock
from agentcore.services.llm import LLMProvider, OpenAIProvider
from agentcore.services.orchestrator import ResponseOrchestrator
from agentcore.services.sentiment_service import SentimentAnalyzer
from agentcore.services.work_queue import DelayedWorkQueue

logger = get_logger("runtime")


@dataclass
class AgentRuntime:
    settings: Settings
    session_factory: Callable[[], Session]
    queue: DelayedWorkQueue
    chat: Optional[ChatProviderClient]
    commerce: Optional[CommerceClient]
    llm: LLMProvider
    classifier: IntentClassifier
    orchestrator: ResponseOrchestrator
    events: WebhookEventHandler
    gateways: tuple = ()

    def close(self) -> None:
        for gateway in self.gateways:
            gateway.close()


def _gateway(settings: Settings, base_url: str, name: str, **kwargs) -> GatewayClient:
    kwargs.setdefault("max_attempts", settings.gateway_max_attempts)
    return GatewayClient(
        base_url,
        name=name,
        base_delay=settings.gateway_base_delay_seconds,
        timeout=settings.gateway_timeout_seconds,
        **kwargs,
    )


def build_runtime(
    settings: Settings,
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    chat=None,
    commerce=None,
    llm: Optional[LLMProvider] = None,
    queue: Optional[DelayedWorkQueue] = None,
) -> AgentRuntime:
    """Wire clients, services and the work queue. Injected collaborators win over settings."""
    gateways = []

    if chat is None and settings.chat_provider_api_key:
        chat_gateway = _gateway(
            settings,
            settings.chat_provider_base_url,
            "chat_provider",
            headers={"Authorization": f"Bearer {settings.chat_provider_api_key}"},
        )
        gateways.append(chat_gateway)
        chat = ChatProviderClient(chat_gateway, settings.default_country_code)
    elif chat is None:
        logger.warning("Chat provider API key not configured, replies will not be delivered")

    if commerce is None and settings.commerce_base_url:
        commerce_gateway = _gateway(
            settings,
            settings.commerce_base_url,
            "commerce",
            auth=(settings.commerce_consumer_key, settings.commerce_consumer_secret),
        )
        gateways.append(commerce_gateway)
        commerce = CommerceClient(commerce_gateway)

    if llm is None:
        llm_gateway = _gateway(
            settings,
            settings.llm_base_url,
            "llm",
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
            max_attempts=settings.llm_max_attempts,
        )
        gateways.append(llm_gateway)
        llm = OpenAIProvider(llm_gateway, default_model=settings.llm_model)

    if queue is None:
        queue = DelayedWorkQueue(
            concurrency=settings.queue_concurrency,
            poll_interval=settings.queue_poll_interval_seconds,
            journal=JobJournal(session_factory),
        )

    discounts = DiscountIssuer(commerce)
    classifier = IntentClassifier(llm, settings.llm_model, settings.intent_timeout_seconds)
    orchestrator = ResponseOrchestrator(
        session_factory,
        chat,
        classifier,
        SentimentAnalyzer(llm, settings.llm_model, settings.intent_timeout_seconds),
        ReplyGenerator(llm, commerce, settings.llm_model, settings.llm_timeout_seconds),
        ActionExecutor(
            commerce,
            discounts,
            queue,
            followup_delay_hours=settings.followup_default_delay_hours,
            followup_message=settings.followup_default_message,
        ),
        discounts=discounts,
        locks=KeyedLock(),
        history_limit=settings.history_limit,
        sentiment_threshold=settings.sentiment_escalation_threshold,
        discount_valid_hours=settings.discount_valid_hours,
        country_code=settings.default_country_code,
    )
    events = WebhookEventHandler(session_factory, orchestrator, settings.default_country_code)
    register_handlers(queue, events)

    return AgentRuntime(
        settings=settings,
        session_factory=session_factory,
        queue=queue,
        chat=chat,
        commerce=commerce,
        llm=llm,
        classifier=classifier,
        orchestrator=orchestrator,
        events=events,
        gateways=tuple(gateways),
    )


def get_runtime(request: Request) -> AgentRuntime:
    return request.app.state.runtime
