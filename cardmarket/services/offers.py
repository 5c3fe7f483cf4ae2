"""Offer creation and state transitions."""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardmarket.constants import (
    COMPLETED_OFFER_RETENTION,
    DEFAULT_OFFER_EXPIRATION_HOURS,
    EXPIRED_OFFER_RETENTION,
    LISTING_ACTIVE,
    MAX_OFFER_AMOUNT,
    OFFER_ACCEPTED,
    OFFER_CANCELLED,
    OFFER_COUNTERED,
    OFFER_DECLINED,
    OFFER_EXPIRED,
    OFFER_PENDING,
    OFFER_PRICE_MULTIPLIER,
    OFFER_SWEEP_LIMIT,
    PREMIUM_TIER,
)
from cardmarket.errors import AuthorizationError, NotFoundError, ValidationError
from cardmarket.models import Listing, Offer, User
from cardmarket.services.account_tier import determine_account_tier, offer_expiration_choices
from cardmarket.services.outbox import Outbox
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)

# status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    OFFER_PENDING: {OFFER_ACCEPTED, OFFER_DECLINED, OFFER_COUNTERED, OFFER_CANCELLED, OFFER_EXPIRED},
    OFFER_COUNTERED: {OFFER_ACCEPTED, OFFER_DECLINED, OFFER_CANCELLED, OFFER_EXPIRED},
}

# action -> (who may perform it, statuses it applies to, resulting status)
ACTIONS = {
    "accept": ("seller", (OFFER_PENDING,), OFFER_ACCEPTED),
    "decline": ("seller", (OFFER_PENDING,), OFFER_DECLINED),
    "counter": ("seller", (OFFER_PENDING,), OFFER_COUNTERED),
    "cancel": ("buyer", (OFFER_PENDING, OFFER_COUNTERED), OFFER_CANCELLED),
    "accept_counter": ("buyer", (OFFER_COUNTERED,), OFFER_ACCEPTED),
    "decline_counter": ("buyer", (OFFER_COUNTERED,), OFFER_DECLINED),
}

# Actions that move an offer toward a sale need the listing to still be on the market
SALE_ACTIONS = ("accept", "counter", "accept_counter")

NOTIFICATION_TITLES = {
    OFFER_ACCEPTED: "Offer Accepted",
    OFFER_DECLINED: "Offer Declined",
    OFFER_COUNTERED: "Counter Offer Received",
    OFFER_CANCELLED: "Offer Cancelled",
}


def parse_amount(value: Any) -> Decimal:
    """Positive, finite amount or ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("Offer amount must be a positive number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("Offer amount must be a positive number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Offer amount must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Offer amount must be a positive number")
    return amount.quantize(Decimal("0.01"))


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def close_open_offers(db: Session, listing_id: int, now: Optional[datetime] = None) -> int:
    """Expire every pending or countered offer on a listing leaving the market. The caller commits."""
    now = now or utcnow()
    outbox = Outbox(db)
    open_offers = (
        db.query(Offer)
        .filter(Offer.listing_id == listing_id)
        .filter(Offer.status.in_(tuple(ALLOWED_TRANSITIONS)))
        .all()
    )
    for offer in open_offers:
        offer.status = OFFER_EXPIRED
        offer.updated_at = now
        outbox.notify(
            offer.buyer_id,
            "offer",
            "Offer Expired",
            f"\"{offer.listing_snapshot.get('title', 'A listing')}\" is no longer available, so your offer has expired",
            data={"offerId": offer.id, "listingId": listing_id},
            email=False,
        )
    if open_offers:
        logger.info(f"Closed {len(open_offers)} open offers on listing {listing_id}")
    return len(open_offers)


class OfferService:
    def __init__(self, db: Session, outbox: Optional[Outbox] = None):
        self.db = db
        self.outbox = outbox or Outbox(db)

    def create_offer(
        self,
        buyer: User,
        listing_id: Any,
        seller_id: Optional[str],
        amount: Any,
        expiration_hours: Optional[int] = None,
        is_pickup: bool = False,
        requires_shipping_info: bool = False,
        shipping_address: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> Offer:
        """Validate and store a new pending offer.

        The listing price used for the ceiling and the stored snapshot both
        come from the database, never from the request.
        """
        now = now or utcnow()

        if listing_id in (None, "") or not seller_id or amount in (None, ""):
            raise ValidationError("Missing required fields")

        amount = parse_amount(amount)
        if amount > MAX_OFFER_AMOUNT:
            raise ValidationError("Offer amount exceeds maximum allowed")

        if buyer.id == seller_id:
            raise AuthorizationError("You cannot make an offer on your own listing")

        try:
            listing_id = int(listing_id)
        except (TypeError, ValueError):
            raise NotFoundError("Listing not found")
        listing = self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if listing.user_id != seller_id:
            raise ValidationError("Invalid seller ID")
        if listing.user_id == buyer.id:
            raise AuthorizationError("You cannot make an offer on your own listing")
        if listing.status != LISTING_ACTIVE or (listing.expires_at is not None and now > listing.expires_at):
            raise ValidationError("Listing is not available for offers")

        if listing.price is not None and listing.price > 0:
            if amount > listing.price * OFFER_PRICE_MULTIPLIER:
                raise ValidationError("Offer amount is unreasonably high")

        hours = self._expiration_hours(buyer, expiration_hours, now)

        offer = Offer(
            listing_id=listing.id,
            buyer_id=buyer.id,
            seller_id=listing.user_id,
            amount=amount,
            listing_snapshot=listing.snapshot(),
            is_pickup=bool(is_pickup),
            requires_shipping_info=bool(requires_shipping_info),
            shipping_address=shipping_address,
            status=OFFER_PENDING,
            cleared=False,
            expires_at=now + timedelta(hours=hours),
            created_at=now,
            updated_at=now,
        )
        self.db.add(offer)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("You already have an active offer for this listing")

        self.outbox.notify(
            listing.user_id,
            "offer",
            "New Offer Received",
            f"{buyer.username} offered ${amount:.2f} on \"{listing.title}\"",
            data={"offerId": offer.id, "listingId": listing.id, "actionUrl": "/dashboard/offers"},
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("You already have an active offer for this listing")

        logger.info(f"Offer {offer.id} created: buyer={buyer.id} listing={listing.id} amount={amount}")
        return offer

    def _expiration_hours(self, buyer: User, requested: Optional[int], now: datetime) -> int:
        if requested is None:
            return DEFAULT_OFFER_EXPIRATION_HOURS
        tier = determine_account_tier(buyer, now)
        if requested not in offer_expiration_choices(PREMIUM_TIER):
            raise ValidationError("Invalid offer expiration")
        if requested not in offer_expiration_choices(tier):
            raise AuthorizationError("Custom offer expiration requires a premium account")
        return requested

    def get_offer(self, offer_id: int) -> Offer:
        offer = self.db.get(Offer, offer_id)
        if offer is None:
            raise NotFoundError("Offer not found")
        return offer

    def get_offer_for_user(self, offer_id: int, user: User) -> Offer:
        offer = self.get_offer(offer_id)
        if user.id not in (offer.buyer_id, offer.seller_id):
            raise AuthorizationError("You do not have access to this offer")
        return offer

    def respond(
        self,
        offer_id: int,
        actor: User,
        action: str,
        counter_amount: Any = None,
        now: Optional[datetime] = None,
    ) -> Offer:
        """Apply a seller or buyer action to an offer."""
        now = now or utcnow()
        if action not in ACTIONS:
            raise ValidationError(f"Unknown offer action '{action}'")
        role, from_statuses, target = ACTIONS[action]

        offer = self.get_offer(offer_id)
        actor_is = offer.seller_id if role == "seller" else offer.buyer_id
        if actor.id != actor_is:
            raise AuthorizationError(f"Only the {role} can {action.replace('_', ' ')} this offer")

        if offer.status in ALLOWED_TRANSITIONS and offer.is_expired(now):
            offer.status = OFFER_EXPIRED
            offer.updated_at = now
            self.db.commit()
            raise ValidationError("This offer has expired")

        if offer.status not in from_statuses or not can_transition(offer.status, target):
            raise ValidationError(f"Cannot {action.replace('_', ' ')} an offer that is {offer.status}")

        if action in SALE_ACTIONS:
            listing = self.db.get(Listing, offer.listing_id)
            if listing is None or listing.status != LISTING_ACTIVE:
                raise ValidationError("Listing is no longer available")

        if action == "counter":
            counter = parse_amount(counter_amount)
            if counter > MAX_OFFER_AMOUNT:
                raise ValidationError("Offer amount exceeds maximum allowed")
            offer.counter_offer = counter
        elif action == "accept_counter":
            offer.amount = offer.counter_offer

        previous = offer.status
        offer.status = target
        offer.updated_at = now

        recipient = offer.buyer_id if role == "seller" else offer.seller_id
        title = offer.listing_snapshot.get("title", "your listing")
        message = f"{actor.username} {target} the offer on \"{title}\""
        if target == OFFER_COUNTERED:
            message = f"{actor.username} countered with ${offer.counter_offer:.2f} on \"{title}\""
        self.outbox.notify(
            recipient,
            "offer",
            NOTIFICATION_TITLES[target],
            message,
            data={"offerId": offer.id, "listingId": offer.listing_id, "actionUrl": "/dashboard/offers"},
        )
        self.db.commit()

        logger.info(f"Offer {offer.id}: {previous} -> {target} by {actor.id}")
        return offer

    def dismiss(self, offer_id: int, user: User) -> Offer:
        """Hide an offer from the caller's dashboard without deleting it."""
        offer = self.get_offer(offer_id)
        if user.id not in (offer.buyer_id, offer.seller_id):
            raise AuthorizationError("You can only clear your own offers")
        offer.cleared = True
        self.db.commit()
        return offer

    def list_for_user(self, user: User, role: str = "buyer", include_cleared: bool = False) -> list[Offer]:
        column = Offer.seller_id if role == "seller" else Offer.buyer_id
        query = self.db.query(Offer).filter(column == user.id)
        if not include_cleared:
            query = query.filter(Offer.cleared.is_(False))
        return query.order_by(Offer.created_at.desc()).all()

    def clear_expired(self, user: User) -> int:
        """Delete the caller's expired and declined offers, as buyer and seller."""
        deleted = (
            self.db.query(Offer)
            .filter(or_(Offer.buyer_id == user.id, Offer.seller_id == user.id))
            .filter(Offer.status.in_((OFFER_EXPIRED, OFFER_DECLINED)))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Cleared {deleted} expired/declined offers for user {user.id}")
        return deleted

    def expire_stale(self, now: Optional[datetime] = None, limit: int = OFFER_SWEEP_LIMIT) -> dict:
        """Flip overdue pending/countered offers to expired and purge old finished offers."""
        now = now or utcnow()

        overdue = (
            self.db.query(Offer)
            .filter(Offer.status.in_(tuple(ALLOWED_TRANSITIONS)))
            .filter(Offer.expires_at < now)
            .order_by(Offer.expires_at.asc())
            .limit(limit)
            .all()
        )
        for offer in overdue:
            offer.status = OFFER_EXPIRED
            offer.updated_at = now
            self.outbox.notify(
                offer.buyer_id,
                "offer",
                "Offer Expired",
                f"Your offer on \"{offer.listing_snapshot.get('title', 'a listing')}\" has expired",
                data={"offerId": offer.id, "listingId": offer.listing_id},
                email=False,
            )
        self.db.commit()

        purged_expired = (
            self.db.query(Offer)
            .filter(Offer.status == OFFER_EXPIRED)
            .filter(Offer.expires_at < now - EXPIRED_OFFER_RETENTION)
            .delete(synchronize_session=False)
        )
        purged_completed = (
            self.db.query(Offer)
            .filter(Offer.status.in_((OFFER_ACCEPTED, OFFER_DECLINED, OFFER_CANCELLED)))
            .filter(Offer.updated_at < now - COMPLETED_OFFER_RETENTION)
            .delete(synchronize_session=False)
        )
        self.db.commit()

        result = {"expired": len(overdue), "purgedExpired": purged_expired, "purgedCompleted": purged_completed}
        logger.info(
            f"Offer sweep: {result['expired']} expired, {purged_expired + purged_completed} purged"
        )
        return result
