"""Nightly rebuild of the per-user order index."""

import logging

from cardmarket.services.job_runs import record_job_run
from cardmarket.services.orders import rebuild_order_index
from cardmarket.tasks.celery_app import celery_app, get_database

logger = logging.getLogger(__name__)

JOB_NAME = "order_index_reconcile"


@celery_app.task(bind=True, max_retries=3)
def reconcile_order_index(self, trigger: str = "schedule"):
    logger.info("Reconciling user order index")

    with get_database().session_scope() as db:
        try:
            result = rebuild_order_index(db)
        except Exception as e:
            db.rollback()
            logger.error(f"Order index reconciliation failed: {e}")
            record_job_run(db, JOB_NAME, ok=False, error=str(e), trigger=trigger)
            raise self.retry(exc=e, countdown=300)

        record_job_run(db, JOB_NAME, ok=True, summary=result, trigger=trigger)

    return {"status": "success", **result}
