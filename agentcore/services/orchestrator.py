"""Top-level pipeline for one inbound customer message.

Received -> IdentityResolved -> RuleMatched | RuleMiss -> [LLMResponded]
-> ActionsExecuted -> Persisted -> Delivered, or Suppressed when a human
already owns the conversation.

Identity and conversation lookup errors propagate so the work queue can
retry the event. Anything that goes wrong after the inbound message is
stored degrades to the apology reply instead, unless a reply already went
out: then only the outbound row is kept and nothing else is sent.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.errors import ActionExecutionError, GatewayError
from agentcore.logging_config import LoggerAdapter, get_logger
from agentcore.models import Conversation, Customer
from agentcore.services.action_service import ActionContext, ActionExecutor
from agentcore.services.ai_service import ReplyContext, ReplyGenerator, apology_reply
from agentcore.services.conversation_service import get_conversation_by_ticket, get_or_create_conversation
from agentcore.services.discount_service import DiscountIssuer
from agentcore.services.escalation_service import escalate_conversation
from agentcore.services.identity_service import IdentityHints, IdentityResolver
from agentcore.services.intent_service import IntentClassifier
from agentcore.services.keyed_lock import KeyedLock
from agentcore.services.message_service import annotate_message, get_recent_history, save_message
from agentcore.services.metrics_service import record_interaction
from agentcore.services.normalization import DEFAULT_COUNTRY_CODE
from agentcore.services.rule_definitions import RuleFacts
from agentcore.services.rule_engine import RuleEngine
from agentcore.services.sentiment_service import NEUTRAL, SentimentAnalyzer
from agentcore.services.state_machine import ConversationStatus

logger = get_logger("orchestrator")


class Stage(str, Enum):
    RECEIVED = "received"
    IDENTITY_RESOLVED = "identity_resolved"
    RULE_MATCHED = "rule_matched"
    RULE_MISS = "rule_miss"
    LLM_RESPONDED = "llm_responded"
    ACTIONS_EXECUTED = "actions_executed"
    PERSISTED = "persisted"
    DELIVERED = "delivered"
    SUPPRESSED = "suppressed"


class Outcome(str, Enum):
    DELIVERED = "delivered"
    SUPPRESSED = "suppressed"
    # conversation already resolved
    DROPPED = "dropped"
    # reply persisted but the provider did not accept it
    UNDELIVERED = "undelivered"


@dataclass
class InboundEvent:
    ticket_id: str
    text: str
    hints: IdentityHints
    channel_id: Optional[str] = None
    channel_type: Optional[str] = None
    subject: Optional[str] = None
    priority: Optional[str] = None
    external_message_id: Optional[str] = None


@dataclass
class OrchestrationResult:
    outcome: Outcome
    stages: list[Stage] = field(default_factory=list)
    ticket_id: Optional[str] = None
    customer_id: Optional[str] = None
    conversation_id: Optional[str] = None
    match_method: Optional[str] = None
    intent: Optional[str] = None
    reply: Optional[str] = None
    source: Optional[str] = None  # rule, llm, fallback
    rule_name: Optional[str] = None
    action: Optional[str] = None
    confidence: Optional[float] = None
    sentiment: Optional[float] = None
    escalated: bool = False
    delivery_status: Optional[str] = None

    def as_dict(self) -> dict:
        data = dict(self.__dict__)
        data["outcome"] = self.outcome.value
        data["stages"] = [stage.value for stage in self.stages]
        return data


@dataclass
class _Draft:
    text: str
    confidence: float
    source: str
    needs_human: bool = False
    rule_name: Optional[str] = None
    action: Optional[str] = None
    escalated: bool = False
    addenda: list[str] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        return "\n\n".join([self.text, *self.addenda]) if self.addenda else self.text


class ResponseOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        chat,
        classifier: IntentClassifier,
        sentiment: SentimentAnalyzer,
        replies: ReplyGenerator,
        actions: ActionExecutor,
        discounts: Optional[DiscountIssuer] = None,
        locks: Optional[KeyedLock] = None,
        history_limit: int = 10,
        sentiment_threshold: float = -0.7,
        discount_valid_hours: float = 24,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self.session_factory = session_factory
        self.chat = chat
        self.classifier = classifier
        self.sentiment = sentiment
        self.replies = replies
        self.actions = actions
        self.discounts = discounts or DiscountIssuer()
        self.locks = locks or KeyedLock()
        self.history_limit = history_limit
        self.sentiment_threshold = sentiment_threshold
        self.discount_valid_hours = discount_valid_hours
        self.country_code = country_code

    def process_event(self, event: InboundEvent) -> OrchestrationResult:
        """Process one inbound message. Same-ticket events are serialized."""
        with self.locks.hold(event.ticket_id):
            db = self.session_factory()
            try:
                return self._process(db, event)
            finally:
                db.close()

    def _process(self, db: Session, event: InboundEvent) -> OrchestrationResult:
        log = LoggerAdapter(logger, {"ticket_id": event.ticket_id})
        result = OrchestrationResult(outcome=Outcome.DELIVERED, stages=[Stage.RECEIVED], ticket_id=event.ticket_id)

        try:
            resolution = IdentityResolver(db, self.country_code).resolve(event.hints)
            customer = resolution.customer
            conversation, created = get_or_create_conversation(
                db,
                event.ticket_id,
                customer,
                channel_id=event.channel_id,
                channel_type=event.channel_type,
                subject=event.subject,
                priority=event.priority,
            )
            if not created and conversation.customer_id != customer.id:
                # the ticket owner wins over whatever the hints resolved to
                customer = conversation.customer
        except Exception:
            db.rollback()
            raise

        result.stages.append(Stage.IDENTITY_RESOLVED)
        result.customer_id = str(customer.id)
        result.conversation_id = str(conversation.id)
        result.match_method = resolution.match_method

        if conversation.status == ConversationStatus.RESOLVED.value:
            db.commit()
            log.info("Event for resolved conversation dropped")
            result.outcome = Outcome.DROPPED
            return result

        inbound = save_message(
            db,
            conversation,
            "inbound",
            event.text,
            message_metadata={"external_message_id": event.external_message_id} if event.external_message_id else None,
        )

        if conversation.human_took_over:
            db.commit()
            log.info("Human owns the conversation, automated reply suppressed")
            result.outcome = Outcome.SUPPRESSED
            result.stages.append(Stage.SUPPRESSED)
            return result

        db.commit()

        try:
            draft = self._respond(db, event, conversation, customer, inbound, result, log)
            return self._deliver(db, conversation, customer, draft, result, log)
        except Exception as exc:
            db.rollback()
            if result.delivery_status == "sent":
                log.error(f"Reply delivered but bookkeeping failed: {exc}", exc_info=True)
                return self._store_delivered(db, event.ticket_id, result, log)
            log.error(f"Processing failed, sending fallback reply: {exc}", exc_info=True)
            return self._deliver_fallback(db, event.ticket_id, result, log)

    def _respond(
        self,
        db: Session,
        event: InboundEvent,
        conversation: Conversation,
        customer: Customer,
        inbound,
        result: OrchestrationResult,
        log: LoggerAdapter,
    ) -> _Draft:
        intent = self.classifier.classify(event.text).value
        result.intent = intent
        inbound.intent = intent

        sentiment = self.sentiment.score(event.text) if self.sentiment else NEUTRAL
        result.sentiment = sentiment.score
        annotate_message(db, inbound, sentiment=sentiment.label, sentiment_score=sentiment.score)

        engine = RuleEngine(db, self.discounts, self.discount_valid_hours)
        facts = RuleFacts.build(intent, event.text, customer, conversation, utcnow())
        outcome = engine.evaluate(facts, conversation, customer)

        if outcome is not None and outcome.succeeded:
            result.stages.append(Stage.RULE_MATCHED)
            draft = _Draft(
                text=outcome.message,
                confidence=outcome.confidence,
                source="rule",
                needs_human=outcome.needs_human,
                rule_name=outcome.rule_name,
                action=outcome.action,
                escalated=outcome.action == "escalate",
            )
        else:
            result.stages.append(Stage.RULE_MISS)
            history = get_recent_history(db, conversation.id, self.history_limit, exclude_id=inbound.id)
            reply = self.replies.generate(
                ReplyContext(message=event.text, intent=intent, customer=customer, history=history)
            )
            result.stages.append(Stage.LLM_RESPONDED)
            draft = _Draft(
                text=reply.text,
                confidence=reply.confidence,
                source="fallback" if reply.is_fallback else "llm",
                needs_human=reply.needs_human,
                action=reply.action,
            )
            if reply.action:
                action_result = self.actions.execute(
                    reply.action,
                    reply.action_data,
                    ActionContext(db=db, conversation=conversation, customer=customer),
                )
                if action_result.ok:
                    effect = action_result.value
                    draft.escalated = draft.escalated or effect.escalated
                    if effect.reply_addendum:
                        draft.addenda.append(effect.reply_addendum)
                else:
                    log.warning(f"Action {reply.action} failed: {action_result.error}")
                    notice = action_result.details.get("reply_addendum")
                    if notice:
                        draft.addenda.append(notice)

        if draft.needs_human and not draft.escalated:
            reason = "Automated reply failed" if draft.source == "fallback" else "Assistant requested human intervention"
            if escalate_conversation(db, conversation, reason, escalation_type="automatic") is not None:
                draft.escalated = True

        result.stages.append(Stage.ACTIONS_EXECUTED)

        if sentiment.score < self.sentiment_threshold:
            escalation = escalate_conversation(
                db,
                conversation,
                f"Negative sentiment ({sentiment.score:.2f})",
                escalation_type="automatic",
            )
            if escalation is not None:
                log.info("Negative sentiment forced escalation", extra={"context": {"score": sentiment.score}})
                draft.escalated = True

        return draft

    def _deliver(
        self,
        db: Session,
        conversation: Conversation,
        customer: Customer,
        draft: _Draft,
        result: OrchestrationResult,
        log: LoggerAdapter,
    ) -> OrchestrationResult:
        text = draft.full_text
        delivery_status = self._send(conversation, customer, text, log)
        result.reply = text
        result.source = draft.source
        result.rule_name = draft.rule_name
        result.action = draft.action
        result.confidence = draft.confidence
        result.delivery_status = delivery_status

        save_message(
            db,
            conversation,
            "outbound",
            text,
            intent=result.intent,
            confidence=draft.confidence,
            automated=True,
            message_metadata={
                "source": draft.source,
                "rule": draft.rule_name,
                "action": draft.action,
                "delivery_status": delivery_status,
            },
        )
        record_interaction(db, draft.confidence, escalated=draft.escalated)
        db.commit()
        result.stages.append(Stage.PERSISTED)

        result.escalated = draft.escalated or conversation.status == ConversationStatus.ESCALATED.value
        if delivery_status == "sent":
            result.stages.append(Stage.DELIVERED)
            result.outcome = Outcome.DELIVERED
        else:
            result.outcome = Outcome.UNDELIVERED

        log.info(
            "Event processed",
            extra={
                "context": {
                    "source": draft.source,
                    "intent": result.intent,
                    "confidence": draft.confidence,
                    "escalated": result.escalated,
                    "delivery_status": delivery_status,
                }
            },
        )
        return result

    def _deliver_fallback(
        self, db: Session, ticket_id: str, result: OrchestrationResult, log: LoggerAdapter
    ) -> OrchestrationResult:
        reply = apology_reply()
        try:
            conversation = get_conversation_by_ticket(db, ticket_id)
            customer = conversation.customer
            draft = _Draft(text=reply.text, confidence=reply.confidence, source="fallback", needs_human=True)
            if escalate_conversation(db, conversation, "Automated reply failed", escalation_type="automatic"):
                draft.escalated = True
            return self._deliver(db, conversation, customer, draft, result, log)
        except Exception as exc:
            db.rollback()
            if result.delivery_status == "sent":
                log.error(f"Apology delivered but bookkeeping failed: {exc}", exc_info=True)
                return self._store_delivered(db, ticket_id, result, log)
            log.error(f"Fallback delivery failed: {exc}", exc_info=True)
            result.outcome = Outcome.UNDELIVERED
            result.reply = reply.text
            result.source = "fallback"
            result.delivery_status = "failed"
            return result

    def _store_delivered(
        self, db: Session, ticket_id: str, result: OrchestrationResult, log: LoggerAdapter
    ) -> OrchestrationResult:
        """The reply already reached the customer: keep the outbound row, never send again."""
        result.outcome = Outcome.DELIVERED
        if Stage.DELIVERED not in result.stages:
            result.stages.append(Stage.DELIVERED)
        try:
            conversation = get_conversation_by_ticket(db, ticket_id)
            save_message(
                db,
                conversation,
                "outbound",
                result.reply,
                intent=result.intent,
                confidence=result.confidence,
                automated=True,
                message_metadata={
                    "source": result.source,
                    "rule": result.rule_name,
                    "action": result.action,
                    "delivery_status": "sent",
                },
            )
            db.commit()
        except Exception as exc:
            db.rollback()
            log.error(f"Delivered reply could not be stored: {exc}", exc_info=True)
        return result

    def _send(self, conversation: Conversation, customer: Customer, text: str, log: LoggerAdapter) -> str:
        if self.chat is None:
            return "skipped"
        if not customer.phone:
            log.warning("Customer has no phone number, reply not sent")
            return "skipped"
        try:
            self.chat.send_text(conversation.channel_id, customer.phone, text)
        except (GatewayError, ValueError) as exc:
            log.error(f"Reply delivery failed: {exc}")
            return "failed"
        return "sent"

    def send_follow_up(self, ticket_id: str, message: str) -> bool:
        """Send a scheduled follow-up unless the conversation has moved on."""
        with self.locks.hold(ticket_id):
            db = self.session_factory()
            try:
                conversation = get_conversation_by_ticket(db, ticket_id)
                if conversation is None:
                    logger.info("Follow-up skipped, unknown ticket", extra={"context": {"ticket_id": ticket_id}})
                    return False
                if conversation.status != ConversationStatus.ACTIVE.value or conversation.human_took_over:
                    logger.info(
                        "Follow-up skipped, conversation moved on",
                        extra={"context": {"ticket_id": ticket_id, "status": conversation.status}},
                    )
                    return False

                log = LoggerAdapter(logger, {"ticket_id": ticket_id})
                delivery_status = self._send(conversation, conversation.customer, message, log)
                if delivery_status == "failed":
                    raise ActionExecutionError("follow_up", "delivery failed")
                save_message(
                    db,
                    conversation,
                    "outbound",
                    message,
                    automated=True,
                    message_metadata={"source": "follow_up", "delivery_status": delivery_status},
                )
                db.commit()
                return True
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
