"""Offer expiry sweep."""

import logging
import time

from cardmarket.services.job_runs import record_job_run
from cardmarket.services.offers import OfferService
from cardmarket.tasks.celery_app import celery_app, get_database

logger = logging.getLogger(__name__)

JOB_NAME = "offer_expiry"


@celery_app.task(bind=True, max_retries=3)
def expire_offers(self, trigger: str = "schedule"):
    """Flip overdue pending/countered offers to expired and purge old ones."""
    logger.info("Starting offer expiry sweep")
    started = time.monotonic()

    with get_database().session_scope() as db:
        try:
            result = OfferService(db).expire_stale()
        except Exception as e:
            db.rollback()
            logger.error(f"Offer expiry sweep failed: {e}")
            record_job_run(db, JOB_NAME, ok=False, error=str(e), trigger=trigger)
            raise self.retry(exc=e, countdown=60)

        record_job_run(
            db,
            JOB_NAME,
            ok=True,
            duration_ms=int((time.monotonic() - started) * 1000),
            summary=result,
            trigger=trigger,
        )

    return {"status": "success", **result}
