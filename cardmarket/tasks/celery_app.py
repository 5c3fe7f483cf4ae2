"""Celery application configuration."""

import logging
import ssl
from typing import Optional

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init, worker_process_shutdown

from cardmarket.config import settings
from cardmarket.constants import SWEEP_INTERVAL_HOURS, SWEEP_MINUTE
from cardmarket.database import Database

logger = logging.getLogger(__name__)

# Handle Heroku Redis SSL connection (rediss://)
redis_url = settings.redis_url
broker_use_ssl = None
backend_use_ssl = None

if redis_url.startswith("rediss://"):
    # Heroku Redis uses SSL - configure for self-signed certs
    broker_use_ssl = {
        "ssl_cert_reqs": ssl.CERT_NONE,
    }
    backend_use_ssl = {
        "ssl_cert_reqs": ssl.CERT_NONE,
    }

# Create Celery app
celery_app = Celery(
    "cardmarket",
    broker=redis_url,
    backend=redis_url,
    include=[
        "cardmarket.tasks.cleanup_listings",
        "cardmarket.tasks.expire_offers",
        "cardmarket.tasks.deliver_outbox",
        "cardmarket.tasks.reconcile_order_index",
    ],
)

# Celery configuration
celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_track_started": True,
    "task_time_limit": 540,  # 9 minute timeout
    "worker_prefetch_multiplier": 1,
    "worker_concurrency": 2,
}

# Add SSL config if using rediss://
if broker_use_ssl:
    celery_config["broker_use_ssl"] = broker_use_ssl
    celery_config["redis_backend_use_ssl"] = backend_use_ssl

celery_app.conf.update(**celery_config)

celery_app.conf.beat_schedule = {}
if settings.scheduler_enabled:
    celery_app.conf.beat_schedule = {
        "sweep-listings-every-2-hours": {
            "task": "cardmarket.tasks.cleanup_listings.sweep_listings",
            "schedule": crontab(minute=SWEEP_MINUTE, hour=f"*/{SWEEP_INTERVAL_HOURS}"),
        },
        "expire-offers-every-15-min": {
            "task": "cardmarket.tasks.expire_offers.expire_offers",
            "schedule": crontab(minute="*/15"),
        },
        "deliver-outbox-every-minute": {
            "task": "cardmarket.tasks.deliver_outbox.deliver_outbox",
            "schedule": 60.0,
        },
        "reconcile-order-index-nightly": {
            "task": "cardmarket.tasks.reconcile_order_index.reconcile_order_index",
            "schedule": crontab(minute=30, hour=3),
        },
    }


# One database handle per worker process, created after the fork.
_database: Optional[Database] = None


def set_database(database: Optional[Database]) -> None:
    global _database
    _database = database


def get_database() -> Database:
    global _database
    if _database is None:
        # Outside a prefork worker (eager mode, shell)
        _database = Database(settings.database_url)
    return _database


@worker_process_init.connect
def init_worker_database(**kwargs):
    set_database(Database(settings.database_url))
    logger.info("Worker database handle initialized")


@worker_process_shutdown.connect
def close_worker_database(**kwargs):
    if _database is not None:
        _database.dispose()
    set_database(None)
