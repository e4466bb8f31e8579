import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, JSONType, utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    content = Column(Text, nullable=False)
    intent = Column(Text)
    confidence = Column(Numeric(5, 3))
    automated = Column(Boolean, nullable=False, default=False)
    message_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
