from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.models import AgentDailyStats


def _today() -> date:
    return utcnow().date()


def _get_or_create_day(db: Session, day: date) -> AgentDailyStats:
    stats = db.get(AgentDailyStats, day)
    if stats is None:
        stats = AgentDailyStats(
            day=day,
            conversations_handled=0,
            confidence_total=0.0,
            confidence_samples=0,
            escalations=0,
        )
        db.add(stats)
        db.flush()
    return stats


def record_interaction(
    db: Session,
    confidence: Optional[float],
    escalated: bool = False,
    day: Optional[date] = None,
) -> AgentDailyStats:
    """Count one handled message for the day, folding in its confidence."""
    stats = _get_or_create_day(db, day or _today())
    stats.conversations_handled += 1
    if confidence is not None:
        stats.confidence_total += float(confidence)
        stats.confidence_samples += 1
    if escalated:
        stats.escalations += 1
    db.flush()
    return stats


def get_daily_metrics(db: Session, days: int = 7) -> list[dict]:
    since = _today() - timedelta(days=days - 1)
    rows = (
        db.query(AgentDailyStats)
        .filter(AgentDailyStats.day >= since)
        .order_by(AgentDailyStats.day.asc())
        .all()
    )
    return [
        {
            "date": row.day.isoformat(),
            "conversations_handled": row.conversations_handled,
            "confidence_avg": round(row.average_confidence, 3),
            "escalations_triggered": row.escalations,
        }
        for row in rows
    ]
