from sqlalchemy import Column, DateTime, Integer, Text

from agentcore.database import Base, JSONType, utcnow


class QueuedJob(Base):
    __tablename__ = "queued_jobs"

    id = Column(Text, primary_key=True)
    kind = Column(Text, nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=5)
    not_before = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    status = Column(Text, nullable=False, default="pending")  # pending, running, retrying, done, dropped
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
