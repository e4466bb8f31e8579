from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from agentcore.models import QueuedJob


class JobJournal:
    """Mirrors the lifecycle of in-memory queue jobs into the queued_jobs table.

    pending -> running -> done | retrying | dropped
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, job, status: str) -> None:
        db = self.session_factory()
        try:
            row = db.get(QueuedJob, job.id)
            if row is None:
                row = QueuedJob(id=job.id, kind=job.kind, payload=job.payload, priority=job.priority)
                db.add(row)
            row.status = status
            row.attempts = job.attempts
            row.max_attempts = job.max_attempts
            row.not_before = datetime.fromtimestamp(job.not_before, tz=timezone.utc)
            row.last_error = job.last_error
            row.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def count_jobs_by_status(db: Session, kind: Optional[str] = None) -> dict[str, int]:
    query = db.query(QueuedJob.status, func.count(QueuedJob.id))
    if kind:
        query = query.filter(QueuedJob.kind == kind)
    return {status: count for status, count in query.group_by(QueuedJob.status).all()}
