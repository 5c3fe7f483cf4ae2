"""Outbox delivery: sends queued emails, pushes and notifications, then purges old sent rows."""

import asyncio
import logging

from cardmarket.api import EmailClient, PushClient
from cardmarket.config import settings
from cardmarket.services.job_runs import record_job_run
from cardmarket.services.outbox import OutboxDispatcher, purge_sent_messages
from cardmarket.tasks.celery_app import celery_app, get_database

logger = logging.getLogger(__name__)

JOB_NAME = "outbox_delivery"


def run_async(coro):
    """Helper to run async code in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(bind=True, max_retries=3)
def deliver_outbox(self, limit: int = 100):
    """Deliver due outbox messages. Failed messages back off on their own schedule."""
    email_client = EmailClient(settings.email_api_url, settings.email_api_key, settings.email_from)
    push_client = PushClient(settings.push_api_url, settings.push_api_key)

    with get_database().session_scope() as db:
        try:
            dispatcher = OutboxDispatcher(db, email_client, push_client)
            result = run_async(dispatcher.deliver_pending(limit=limit))
        except Exception as e:
            db.rollback()
            logger.error(f"Outbox delivery failed: {e}")
            record_job_run(db, JOB_NAME, ok=False, error=str(e))
            raise self.retry(exc=e, countdown=30)

        result["purged"] = purge_sent_messages(db)

        # Idle runs happen every minute; only record runs that did something.
        if result["processed"] or result["purged"]:
            record_job_run(db, JOB_NAME, ok=result["dead"] == 0, summary=result)

    return {"status": "success", **result}
