"""Scheduled listing sweep: archive expired listings, delete archived ones past TTL."""

import logging
import time

from cardmarket.services.job_runs import record_job_run
from cardmarket.services.listing_lifecycle import SWEEP_JOB_NAME, ListingLifecycle
from cardmarket.tasks.celery_app import celery_app, get_database

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def sweep_listings(self, trigger: str = "schedule"):
    """
    Run the listing lifecycle sweep.

    Not retried: per-listing failures are already isolated inside the sweep,
    and the next scheduled run picks up anything left behind.
    """
    logger.info(f"Starting listing sweep (trigger={trigger})")
    started = time.monotonic()

    with get_database().session_scope() as db:
        try:
            result = ListingLifecycle(db).sweep()
        except Exception as e:
            db.rollback()
            logger.error(f"Listing sweep failed: {e}")
            record_job_run(
                db,
                SWEEP_JOB_NAME,
                ok=False,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
                trigger=trigger,
            )
            raise

        record_job_run(
            db,
            SWEEP_JOB_NAME,
            ok=result["errors"] == 0,
            duration_ms=int((time.monotonic() - started) * 1000),
            summary={k: result[k] for k in ("checked", "archived", "deleted", "errors")},
            trigger=trigger,
        )

    return {"status": "success", **result}
