from typing import Optional

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.logging_config import get_logger
from agentcore.models import Conversation, Escalation
from agentcore.services.state_machine import ConversationStatus, InvalidTransitionError, escalate, resolve

logger = get_logger("escalation_service")


def get_open_escalation(db: Session, conversation: Conversation) -> Optional[Escalation]:
    return (
        db.query(Escalation)
        .filter(Escalation.conversation_id == conversation.id, Escalation.status != "resolved")
        .order_by(Escalation.created_at.desc())
        .first()
    )


def escalate_conversation(
    db: Session,
    conversation: Conversation,
    reason: str,
    escalation_type: str = "automatic",
    assigned_to: Optional[str] = None,
) -> Optional[Escalation]:
    """Hand the conversation to a human.

    Returns the new Escalation, or None when a human already owns the
    conversation (a second automatic trigger in the same turn must not
    create a duplicate row). Manual escalations on an owned conversation
    update the assignee of the open escalation instead.
    """
    status = ConversationStatus(conversation.status)
    if status == ConversationStatus.RESOLVED:
        raise InvalidTransitionError(status, ConversationStatus.ESCALATED)

    now = utcnow()
    if status == ConversationStatus.ESCALATED and conversation.human_took_over:
        open_escalation = get_open_escalation(db, conversation)
        if escalation_type == "manual" and open_escalation is not None and assigned_to:
            open_escalation.assigned_to = assigned_to
            open_escalation.status = "assigned"
            db.flush()
        return None

    if status == ConversationStatus.ACTIVE:
        conversation.status = escalate(status).value
    conversation.human_took_over = True
    conversation.human_took_over_at = now

    escalation = Escalation(
        conversation_id=conversation.id,
        type=escalation_type,
        reason=reason,
        status="assigned" if assigned_to else "pending",
        assigned_to=assigned_to,
        created_at=now,
    )
    db.add(escalation)
    db.flush()

    logger.info(
        "Conversation escalated",
        extra={
            "context": {
                "ticket_id": conversation.ticket_id,
                "type": escalation_type,
                "reason": reason,
            }
        },
    )
    return escalation


def release_conversation(db: Session, conversation: Conversation) -> Conversation:
    """Human hands the conversation back to the bot. Status stays escalated."""
    conversation.human_took_over = False
    db.flush()
    logger.info("Conversation released to bot", extra={"context": {"ticket_id": conversation.ticket_id}})
    return conversation


def resolve_conversation(db: Session, conversation: Conversation) -> Conversation:
    """Close the conversation and any open escalations. Raises if already resolved."""
    now = utcnow()
    conversation.status = resolve(ConversationStatus(conversation.status)).value
    conversation.resolved_at = now
    conversation.human_took_over = False
    open_escalations = (
        db.query(Escalation)
        .filter(Escalation.conversation_id == conversation.id, Escalation.status != "resolved")
        .all()
    )
    for escalation in open_escalations:
        escalation.status = "resolved"
        escalation.resolved_at = now
    db.flush()
    logger.info("Conversation resolved", extra={"context": {"ticket_id": conversation.ticket_id}})
    return conversation
