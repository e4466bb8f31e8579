from sqlalchemy import Column, Date, Float, Integer

from agentcore.database import Base


class AgentDailyStats(Base):
    __tablename__ = "agent_daily_stats"

    day = Column(Date, primary_key=True)
    conversations_handled = Column(Integer, nullable=False, default=0)
    confidence_total = Column(Float, nullable=False, default=0.0)
    confidence_samples = Column(Integer, nullable=False, default=0)
    escalations = Column(Integer, nullable=False, default=0)

    @property
    def average_confidence(self) -> float:
        if not self.confidence_samples:
            return 0.0
        return self.confidence_total / self.confidence_samples
