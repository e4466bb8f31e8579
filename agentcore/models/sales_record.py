import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from agentcore.database import Base, JSONType, utcnow


class SalesRecord(Base):
    __tablename__ = "sales_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_order_id = Column(Text, nullable=False, unique=True)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(Text, nullable=False, default="MXN")
    status = Column(Text)
    source = Column(Text, nullable=False, default="webhook")  # webhook, agent
    items = Column(JSONType, nullable=False, default=list)
    ordered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    customer = relationship("Customer", back_populates="sales")
