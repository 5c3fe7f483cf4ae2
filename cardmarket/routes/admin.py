"""Operator routes: moderation, outbox, background jobs."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cardmarket.auth import require_admin
from cardmarket.database import get_db
from cardmarket.errors import NotFoundError
from cardmarket.services.job_runs import recent_job_runs
from cardmarket.services.moderation import moderate_listing
from cardmarket.services.offers import OfferService
from cardmarket.services.orders import rebuild_order_index
from cardmarket.services.outbox import OutboxDispatcher, list_dead_messages, requeue_message
from cardmarket.tasks.celery_app import celery_app
from cardmarket.tasks.cleanup_listings import sweep_listings
from cardmarket.tasks.deliver_outbox import deliver_outbox
from cardmarket.tasks.expire_offers import expire_offers
from cardmarket.tasks.reconcile_order_index import reconcile_order_index

router = APIRouter(dependencies=[Depends(require_admin)])

QUEUEABLE_JOBS = {
    "listing_sweep": sweep_listings,
    "offer_expiry": expire_offers,
    "outbox_delivery": deliver_outbox,
    "order_index_reconcile": reconcile_order_index,
}


class ModerationRequest(BaseModel):
    listingId: int
    action: str
    reason: str = Field(..., min_length=1)
    moderatorId: Optional[str] = None


@router.post("/moderation/listing-action")
async def moderation_listing_action(body: ModerationRequest, db: Session = Depends(get_db)):
    """Archive, restore or delete a listing; the owner is notified."""
    return moderate_listing(db, body.listingId, body.action, body.reason, moderator_id=body.moderatorId)


@router.get("/outbox/dead")
async def dead_outbox_messages(limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    messages = list_dead_messages(db, limit)
    return {"messages": [message.to_dict() for message in messages], "count": len(messages)}


@router.post("/outbox/{message_id}/requeue")
async def requeue_outbox_message(message_id: int, db: Session = Depends(get_db)):
    return {"success": True, "message": requeue_message(db, message_id).to_dict()}


@router.post("/outbox/deliver")
async def deliver_outbox_now(request: Request, db: Session = Depends(get_db)):
    """Deliver due messages in-process instead of waiting for the worker."""
    dispatcher = OutboxDispatcher(db, request.app.state.email_client, request.app.state.push_client)
    return await dispatcher.deliver_pending()


@router.post("/offers/expire")
async def expire_offers_now(db: Session = Depends(get_db)):
    return OfferService(db).expire_stale()


@router.post("/orders/reindex")
async def reindex_orders(db: Session = Depends(get_db)):
    return rebuild_order_index(db)


@router.get("/job-runs")
async def job_runs(jobName: Optional[str] = None, limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    return {"runs": [run.to_dict() for run in recent_job_runs(db, jobName, limit)]}


@router.post("/jobs/{job_name}/run")
async def queue_job(job_name: str):
    """Queue a background job on the Celery workers."""
    task = QUEUEABLE_JOBS.get(job_name)
    if task is None:
        raise NotFoundError(f"Unknown job '{job_name}'")
    kwargs = {} if job_name == "outbox_delivery" else {"trigger": "manual"}
    result = task.apply_async(kwargs=kwargs)
    return {"status": "queued", "jobName": job_name, "taskId": result.id}


@router.get("/task-status/{task_id}")
async def task_status(task_id: str):
    """Poll a celery task state."""
    res = celery_app.AsyncResult(task_id)
    payload = {"taskId": task_id, "state": res.state, "ready": res.ready()}
    if res.ready():
        payload["result"] = res.result if res.successful() else str(res.result)
    return payload
