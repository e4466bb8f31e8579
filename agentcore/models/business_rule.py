import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, JSONType, utcnow


class BusinessRule(Base):
    __tablename__ = "business_rules"

    # Integer key doubles as creation order for priority ties
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    category = Column(Text, nullable=False)  # response, escalation, discount
    trigger = Column(JSONType, nullable=False, default=dict)
    conditions = Column(JSONType, nullable=False, default=dict)
    actions = Column(JSONType, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    executions = relationship("RuleExecution", back_populates="rule")


class RuleExecution(Base):
    __tablename__ = "rule_executions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_id = Column(Integer, ForeignKey("business_rules.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"))
    trigger = Column(JSONType, nullable=False, default=dict)  # intent + message snapshot
    success = Column(Boolean, nullable=False)
    action = Column(Text)
    result = Column(JSONType, nullable=False, default=dict)
    error = Column(Text)
    execution_ms = Column(Integer, nullable=False, default=0)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    rule = relationship("BusinessRule", back_populates="executions")
