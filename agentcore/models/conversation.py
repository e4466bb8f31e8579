import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Text, nullable=False, unique=True)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False)
    channel_id = Column(Text)
    channel_type = Column(Text)  # whatsapp, messenger, instagram
    status = Column(Text, nullable=False, default="active")  # active, escalated, resolved
    priority = Column(Text, nullable=False, default="normal")
    subject = Column(Text)
    human_took_over = Column(Boolean, nullable=False, default=False)
    human_took_over_at = Column(DateTime(timezone=True))
    message_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_message_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))

    customer = relationship("Customer", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    escalations = relationship("Escalation", back_populates="conversation")
