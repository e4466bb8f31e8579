from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.models import Conversation, Message


def save_message(
    db: Session,
    conversation: Conversation,
    direction: str,
    content: str,
    intent: Optional[str] = None,
    confidence: Optional[float] = None,
    automated: bool = False,
    message_metadata: Optional[dict] = None,
) -> Message:
    """Append a message and bump the conversation's running counters."""
    now = utcnow()
    message = Message(
        conversation_id=conversation.id,
        direction=direction,
        content=content,
        intent=intent,
        confidence=confidence,
        automated=automated,
        message_metadata=message_metadata or {},
        created_at=now,
    )
    db.add(message)
    conversation.message_count = (conversation.message_count or 0) + 1
    conversation.last_message_at = now
    db.flush()
    return message


def annotate_message(db: Session, message: Message, **metadata) -> None:
    """Merge attribution data into an already stored message."""
    message.message_metadata = {**(message.message_metadata or {}), **metadata}
    db.flush()


def get_recent_history(db: Session, conversation_id: UUID, limit: int = 10, exclude_id: Optional[UUID] = None) -> list[Message]:
    """Last ``limit`` messages in chronological order."""
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if exclude_id is not None:
        query = query.filter(Message.id != exclude_id)
    messages = query.order_by(Message.created_at.desc()).limit(limit).all()
    return list(reversed(messages))
