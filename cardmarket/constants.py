"""Lifecycle thresholds.

These are fixed business rules, not deployment settings.
"""

from datetime import timedelta
from decimal import Decimal

# Account tiers
FREE_TIER = "free"
PREMIUM_TIER = "premium"

ACCOUNT_TIERS = {
    FREE_TIER: {
        "listing_duration_hours": 48,
        "offer_expiration_hours": (24,),
    },
    PREMIUM_TIER: {
        "listing_duration_hours": 720,  # 30 days
        "offer_expiration_hours": (24, 48, 72, 168),
    },
}

# Listing statuses
LISTING_ACTIVE = "active"
LISTING_INACTIVE = "inactive"
LISTING_EXPIRED = "expired"
LISTING_ARCHIVED = "archived"
LISTING_SOLD = "sold"
LISTING_STATUSES = (LISTING_ACTIVE, LISTING_INACTIVE, LISTING_EXPIRED, LISTING_ARCHIVED, LISTING_SOLD)

# Archive reasons
REASON_TIER_DURATION = "tier_duration_exceeded"
REASON_INACTIVE_TIMEOUT = "inactive_timeout"
REASON_MANUAL_ARCHIVE = "manual_archive"

# Listing sweep
ARCHIVE_RETENTION = timedelta(days=7)
INACTIVE_TIMEOUT = timedelta(days=7)
CLEANUP_CHUNK_SIZE = 100

# Backup cleanup
BACKUP_CHUNK_SIZE = 100
BACKUP_SCAN_LIMIT = BACKUP_CHUNK_SIZE * 2
EMERGENCY_OVERDUE_MINUTES = 180
WARNING_OVERDUE_MINUTES = 60
DEFAULT_MAX_DELETIONS = 50

# Sweep schedule: every 2 hours at :15 (UTC)
SWEEP_INTERVAL_HOURS = 2
SWEEP_MINUTE = 15
SWEEP_STALE_MINUTES = 150

# Offers
OFFER_PENDING = "pending"
OFFER_ACCEPTED = "accepted"
OFFER_DECLINED = "declined"
OFFER_COUNTERED = "countered"
OFFER_EXPIRED = "expired"
OFFER_CANCELLED = "cancelled"

MAX_OFFER_AMOUNT = Decimal("50000")
OFFER_PRICE_MULTIPLIER = Decimal("2")
DEFAULT_OFFER_EXPIRATION_HOURS = 24
EXPIRED_OFFER_RETENTION = timedelta(days=7)
COMPLETED_OFFER_RETENTION = timedelta(days=30)
OFFER_SWEEP_LIMIT = 500

# Orders
ORDER_ID_ATTEMPTS = 3
ORDER_PENDING = "pending"
ORDER_AWAITING_PAYMENT = "awaiting_payment"
ORDER_PAID = "paid"
ORDER_AWAITING_SHIPPING = "awaiting_shipping"
ORDER_SHIPPED = "shipped"
ORDER_COMPLETED = "completed"
PICKUP_CONFIRMABLE_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_AWAITING_SHIPPING)
# Payment capture happens outside this service, so an unpaid shipped order can still be closed by its buyer
BUYER_COMPLETABLE_STATUSES = (ORDER_AWAITING_PAYMENT, ORDER_PAID, ORDER_AWAITING_SHIPPING, ORDER_SHIPPED)
BUYER_COMPLETION_DELAY = timedelta(hours=24)
SHIPPING_ADDRESS_FIELDS = ("name", "line1", "city", "state", "postalCode", "country")
PICKUP_ADDRESS = {
    "name": "Local Pickup",
    "line1": "Local pickup arranged with seller",
    "city": "",
    "state": "",
    "postalCode": "",
    "country": "",
}
PENDING_SHIPPING_ADDRESS = {
    "name": "Pending",
    "line1": "Shipping information pending",
    "city": "",
    "state": "",
    "postalCode": "",
    "country": "",
}

# Outbox delivery
OUTBOX_MAX_ATTEMPTS = 5
OUTBOX_BATCH_SIZE = 100
OUTBOX_SENT_RETENTION = timedelta(days=7)

# Outbound HTTP retries: 1s, 2s, 4s ... no jitter
HTTP_RETRY_ATTEMPTS = 3
HTTP_RETRY_BASE_SECONDS = 1.0
HTTP_TIMEOUT_SECONDS = 30.0
