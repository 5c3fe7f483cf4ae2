"""Bookkeeping for background job runs."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from cardmarket.models import JobRun
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)


def record_job_run(
    db: Session,
    job_name: str,
    ok: bool,
    duration_ms: Optional[int] = None,
    summary: Optional[dict] = None,
    error: Optional[str] = None,
    trigger: str = "schedule",
) -> Optional[JobRun]:
    """Store one run. Never raises; a failed write is only logged."""
    try:
        run = JobRun(
            job_name=job_name,
            trigger=trigger,
            ran_at=utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            summary=summary or {},
            error=(error or "")[:2000] or None,
        )
        db.add(run)
        db.commit()
        return run
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record job run for {job_name}: {e}")
        return None


def recent_job_runs(db: Session, job_name: Optional[str] = None, limit: int = 20) -> list[JobRun]:
    query = db.query(JobRun)
    if job_name:
        query = query.filter(JobRun.job_name == job_name)
    return query.order_by(JobRun.ran_at.desc()).limit(limit).all()
