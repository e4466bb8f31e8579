import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, utcnow


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_id = Column(Text, unique=True)  # chat provider customer id
    email = Column(Text, index=True)  # case-folded
    phone = Column(Text, index=True)  # E.164-like
    name = Column(Text)
    order_count = Column(Integer, nullable=False, default=0)
    lifetime_spend = Column(Numeric(12, 2), nullable=False, default=0)
    last_order_at = Column(DateTime(timezone=True))
    segment = Column(Text, nullable=False, default="new")  # new, regular, loyal, vip
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    conversations = relationship("Conversation", back_populates="customer")
    attributes = relationship("CustomerAttribute", back_populates="customer", cascade="all, delete-orphan")
    sales = relationship("SalesRecord", back_populates="customer")


class CustomerAttribute(Base):
    __tablename__ = "customer_attributes"
    __table_args__ = (UniqueConstraint("customer_id", "key", name="uq_customer_attribute_key"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False)
    key = Column(Text, nullable=False)
    value = Column(Text)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="attributes")
