"""Database models."""

from cardmarket.models.user import User
from cardmarket.models.listing import Listing
from cardmarket.models.short_id_mapping import ShortIdMapping
from cardmarket.models.offer import Offer
from cardmarket.models.order import Order, UserOrderIndex
from cardmarket.models.favorite import Favorite
from cardmarket.models.wanted_post import WantedPost
from cardmarket.models.notification import Notification
from cardmarket.models.outbox import OutboxMessage
from cardmarket.models.job_run import JobRun

__all__ = [
    "User",
    "Listing",
    "ShortIdMapping",
    "Offer",
    "Order",
    "UserOrderIndex",
    "Favorite",
    "WantedPost",
    "Notification",
    "OutboxMessage",
    "JobRun",
]
