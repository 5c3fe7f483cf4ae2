"""Account tier detection and tier-derived durations."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from cardmarket.constants import ACCOUNT_TIERS, FREE_TIER, PREMIUM_TIER
from cardmarket.models import User
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)


def normalize_tier(tier: Optional[str]) -> str:
    """Unknown or missing tiers are treated as free."""
    tier = (tier or "").strip().lower()
    return tier if tier in ACCOUNT_TIERS else FREE_TIER


def listing_duration(tier: Optional[str]) -> timedelta:
    return timedelta(hours=ACCOUNT_TIERS[normalize_tier(tier)]["listing_duration_hours"])


def offer_expiration_choices(tier: Optional[str]) -> tuple:
    return ACCOUNT_TIERS[normalize_tier(tier)]["offer_expiration_hours"]


def determine_account_tier(user: Optional[User], now: Optional[datetime] = None) -> str:
    """
    Resolve a user's effective tier.

    Premium wins if any source says premium:
        - the ``account_tier`` field
        - an active or trialing subscription
        - a cancelled subscription still inside its paid period
        - an operator-granted subscription (id prefixed ``admin_``)
    """
    if user is None:
        return FREE_TIER

    now = now or utcnow()
    from_field = normalize_tier(user.account_tier)

    from_subscription = FREE_TIER
    status = (user.subscription_status or "").lower()
    if status in ("active", "trialing"):
        from_subscription = PREMIUM_TIER
    elif status in ("canceled", "cancelled") and user.subscription_end_date and now < user.subscription_end_date:
        from_subscription = PREMIUM_TIER
    if (user.subscription_id or "").startswith("admin_") and status != "none":
        from_subscription = PREMIUM_TIER

    tier = PREMIUM_TIER if PREMIUM_TIER in (from_field, from_subscription) else FREE_TIER
    logger.debug(
        f"Account tier for user {user.id}: field={from_field} subscription={from_subscription} -> {tier}"
    )
    return tier
