import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, utcnow


class Escalation(Base):
    __tablename__ = "escalations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    type = Column(Text, nullable=False)  # automatic, manual
    reason = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, assigned, resolved
    assigned_to = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True))

    conversation = relationship("Conversation", back_populates="escalations")
