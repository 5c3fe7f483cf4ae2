"""Celery tasks."""

from cardmarket.tasks.celery_app import celery_app
from cardmarket.tasks.cleanup_listings import sweep_listings
from cardmarket.tasks.deliver_outbox import deliver_outbox
from cardmarket.tasks.expire_offers import expire_offers
from cardmarket.tasks.reconcile_order_index import reconcile_order_index

__all__ = [
    "celery_app",
    "sweep_listings",
    "expire_offers",
    "deliver_outbox",
    "reconcile_order_index",
]
