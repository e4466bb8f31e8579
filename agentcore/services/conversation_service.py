from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.errors import NotFoundError
from agentcore.logging_config import get_logger
from agentcore.models import Conversation, Customer
from agentcore.services.state_machine import ConversationStatus

logger = get_logger("conversation_service")


def get_conversation_by_ticket(db: Session, ticket_id: str) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.ticket_id == ticket_id).first()


def require_conversation(db: Session, ticket_id: str) -> Conversation:
    conversation = get_conversation_by_ticket(db, ticket_id)
    if conversation is None:
        raise NotFoundError(f"Conversation for ticket {ticket_id} not found")
    return conversation


def get_or_create_conversation(
    db: Session,
    ticket_id: str,
    customer: Customer,
    channel_id: Optional[str] = None,
    channel_type: Optional[str] = None,
    subject: Optional[str] = None,
    priority: Optional[str] = None,
) -> Tuple[Conversation, bool]:
    """Find the conversation for a ticket or open a new one. Returns (conversation, created)."""
    conversation = get_conversation_by_ticket(db, ticket_id)
    if conversation:
        if channel_id and not conversation.channel_id:
            conversation.channel_id = channel_id
            conversation.channel_type = channel_type
            db.flush()
        return conversation, False

    conversation = Conversation(
        ticket_id=ticket_id,
        customer_id=customer.id,
        channel_id=channel_id,
        channel_type=channel_type,
        subject=subject,
        priority=priority or "normal",
        status=ConversationStatus.ACTIVE.value,
        human_took_over=False,
        message_count=0,
        started_at=utcnow(),
    )
    savepoint = db.begin_nested()
    try:
        db.add(conversation)
        db.flush()
    except IntegrityError:
        savepoint.rollback()
        existing = get_conversation_by_ticket(db, ticket_id)
        if existing is None:
            raise
        return existing, False
    savepoint.commit()

    logger.info(
        "Conversation opened",
        extra={"context": {"ticket_id": ticket_id, "customer_id": str(customer.id)}},
    )
    return conversation, True
