"""Queue handlers for provider webhook events and scheduled follow-ups.

Errors that a retry cannot fix (unknown ticket, illegal status change) are
logged and the job completes. Anything else propagates so the work queue
retries the event with backoff.
"""

from contextlib import nullcontext
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from agentcore.database import ensure_aware
from agentcore.errors import NotFoundError
from agentcore.logging_config import get_logger
from agentcore.schemas.webhook import WebhookPayload
from agentcore.services.action_service import FOLLOW_UP_JOB
from agentcore.services.conversation_service import get_conversation_by_ticket, get_or_create_conversation
from agentcore.services.escalation_service import escalate_conversation, resolve_conversation
from agentcore.services.identity_service import IdentityHints, IdentityResolver, apply_attributes, record_order
from agentcore.services.normalization import DEFAULT_COUNTRY_CODE, normalize_email, normalize_phone
from agentcore.services.orchestrator import InboundEvent, ResponseOrchestrator
from agentcore.services.state_machine import ConversationStatus, InvalidTransitionError

logger = get_logger("event_handlers")

WEBHOOK_JOB = "webhook_event"

CLOSED_TICKET_STATUSES = {"resolved", "closed"}


def hints_from_payload(payload: WebhookPayload) -> IdentityHints:
    customer = payload.customer
    if customer is None:
        return IdentityHints()
    return IdentityHints(external_id=customer.id, email=customer.email, phone=customer.phone, name=customer.name)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Unparseable order timestamp: {value}")
        return None


class WebhookEventHandler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        orchestrator: ResponseOrchestrator,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.country_code = country_code
        self._dispatch = {
            "ticket.created": self.on_ticket_created,
            "ticket.message": self.on_message,
            "message.received": self.on_message,
            "ticket.updated": self.on_ticket_updated,
            "ticket.resolved": self.on_ticket_resolved,
            "ticket.escalated": self.on_ticket_escalated,
            "customer.created": self.on_customer_changed,
            "customer.updated": self.on_customer_changed,
            "attributes.updated": self.on_attributes_updated,
            "order.created": self.on_order_changed,
            "order.updated": self.on_order_changed,
        }

    def __call__(self, job) -> dict:
        return self.handle(WebhookPayload.model_validate(job.payload))

    def handle(self, payload: WebhookPayload) -> dict:
        action = payload.normalized_action
        handler = self._dispatch.get(action)
        if handler is None:
            logger.info(f"Unhandled webhook action: {payload.action}")
            return {"action": action, "status": "ignored"}

        try:
            result = handler(payload)
        except (NotFoundError, InvalidTransitionError) as exc:
            logger.warning(f"Webhook event skipped: {exc}", extra={"context": {"action": action}})
            return {"action": action, "status": "skipped", "reason": str(exc)}

        logger.info("Webhook event handled", extra={"context": {"action": action}})
        return {"action": action, "status": "handled", "result": result}

    def _ticket_lock(self, payload: WebhookPayload):
        if payload.ticket and payload.ticket.id:
            return self.orchestrator.locks.hold(payload.ticket.id)
        return nullcontext()

    def _event_from(self, payload: WebhookPayload, text: str) -> InboundEvent:
        ticket = payload.ticket
        channel = payload.channel
        return InboundEvent(
            ticket_id=ticket.id,
            text=text,
            hints=hints_from_payload(payload),
            channel_id=(channel.id if channel else None) or ticket.channel_id,
            channel_type=(channel.type if channel else None) or ticket.channel,
            subject=ticket.subject,
            priority=ticket.priority,
            external_message_id=payload.message.id if payload.message else None,
        )

    def on_ticket_created(self, payload: WebhookPayload) -> dict:
        text = payload.text
        if text:
            return self.orchestrator.process_event(self._event_from(payload, text)).as_dict()

        event = self._event_from(payload, "")
        with self.orchestrator.locks.hold(event.ticket_id):
            db = self.session_factory()
            try:
                customer = IdentityResolver(db, self.country_code).resolve(event.hints).customer
                conversation, created = get_or_create_conversation(
                    db,
                    event.ticket_id,
                    customer,
                    channel_id=event.channel_id,
                    channel_type=event.channel_type,
                    subject=event.subject,
                    priority=event.priority,
                )
                db.commit()
                return {"conversation_id": str(conversation.id), "created": created}
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def on_message(self, payload: WebhookPayload) -> dict:
        text = payload.text
        if not text or not text.strip():
            logger.info("Message event without text ignored", extra={"context": {"ticket_id": payload.ticket.id}})
            return {"processed": False}
        return self.orchestrator.process_event(self._event_from(payload, text)).as_dict()

    def on_ticket_updated(self, payload: WebhookPayload) -> dict:
        ticket = payload.ticket
        with self.orchestrator.locks.hold(ticket.id):
            db = self.session_factory()
            try:
                conversation = get_conversation_by_ticket(db, ticket.id)
                if conversation is None:
                    raise NotFoundError(f"Conversation for ticket {ticket.id} not found")
                if ticket.subject:
                    conversation.subject = ticket.subject
                if ticket.priority:
                    conversation.priority = ticket.priority
                if (ticket.status or "").lower() in CLOSED_TICKET_STATUSES and (
                    conversation.status != ConversationStatus.RESOLVED.value
                ):
                    resolve_conversation(db, conversation)
                db.commit()
                return {"status": conversation.status, "priority": conversation.priority}
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def on_ticket_resolved(self, payload: WebhookPayload) -> dict:
        ticket_id = payload.ticket.id
        with self.orchestrator.locks.hold(ticket_id):
            db = self.session_factory()
            try:
                conversation = get_conversation_by_ticket(db, ticket_id)
                if conversation is None:
                    raise NotFoundError(f"Conversation for ticket {ticket_id} not found")
                if conversation.status == ConversationStatus.RESOLVED.value:
                    return {"status": conversation.status, "changed": False}
                resolve_conversation(db, conversation)
                db.commit()
                return {"status": conversation.status, "changed": True}
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def on_ticket_escalated(self, payload: WebhookPayload) -> dict:
        event = self._event_from(payload, "")
        agent = payload.agent
        assignee = (agent.name or agent.id) if agent else None
        reason = getattr(payload.ticket, "reason", None) or "Escalated from the chat provider"

        with self.orchestrator.locks.hold(event.ticket_id):
            db = self.session_factory()
            try:
                customer = IdentityResolver(db, self.country_code).resolve(event.hints).customer
                conversation, _ = get_or_create_conversation(
                    db,
                    event.ticket_id,
                    customer,
                    channel_id=event.channel_id,
                    channel_type=event.channel_type,
                    subject=event.subject,
                    priority=event.priority,
                )
                escalation = escalate_conversation(
                    db, conversation, reason, escalation_type="manual", assigned_to=assignee
                )
                db.commit()
                return {
                    "status": conversation.status,
                    "escalation_id": str(escalation.id) if escalation else None,
                    "assigned_to": assignee,
                }
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def on_customer_changed(self, payload: WebhookPayload) -> dict:
        if payload.customer is None:
            raise NotFoundError("Customer event without customer data")
        with self._ticket_lock(payload):
            db = self.session_factory()
            try:
                resolution = IdentityResolver(db, self.country_code).resolve(hints_from_payload(payload))
                customer = resolution.customer
                incoming = payload.customer
                if incoming.name:
                    customer.name = incoming.name.strip()
                email = normalize_email(incoming.email)
                if email:
                    customer.email = email
                phone = normalize_phone(incoming.phone, self.country_code)
                if phone:
                    customer.phone = phone
                attributes = {**(incoming.attributes or {}), **(payload.attributes or {})}
                written = apply_attributes(db, customer, attributes)
                db.commit()
                return {
                    "customer_id": str(customer.id),
                    "match_method": resolution.match_method,
                    "attributes_written": written,
                }
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def on_attributes_updated(self, payload: WebhookPayload) -> dict:
        attributes = payload.attributes or (payload.customer.attributes if payload.customer else None)
        if not attributes:
            return {"attributes_written": 0}
        db = self.session_factory()
        try:
            customer = IdentityResolver(db, self.country_code).resolve(hints_from_payload(payload)).customer
            written = apply_attributes(db, customer, attributes)
            db.commit()
            return {"customer_id": str(customer.id), "attributes_written": written}
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def on_order_changed(self, payload: WebhookPayload) -> dict:
        order = payload.order
        hints = hints_from_payload(payload)
        if hints.is_empty():
            raise NotFoundError(f"Order {order.id} has no customer to attach to")
        db = self.session_factory()
        try:
            customer = IdentityResolver(db, self.country_code).resolve(hints).customer
            record = record_order(
                db,
                customer,
                order.id,
                order.total,
                status=order.status,
                currency=order.currency or "MXN",
                items=order.items,
                ordered_at=_parse_timestamp(order.created_at),
                source="webhook",
            )
            db.commit()
            return {
                "customer_id": str(customer.id),
                "order_id": record.external_order_id,
                "segment": customer.segment,
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def make_follow_up_handler(orchestrator: ResponseOrchestrator) -> Callable:
    def handle_follow_up(job) -> bool:
        return orchestrator.send_follow_up(job.payload["ticket_id"], job.payload["message"])

    return handle_follow_up


def register_handlers(queue, events: WebhookEventHandler) -> None:
    queue.register(WEBHOOK_JOB, events)
    queue.register(FOLLOW_UP_JOB, make_follow_up_handler(events.orchestrator))
