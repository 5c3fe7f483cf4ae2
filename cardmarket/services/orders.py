"""Order materialization from accepted offers, fulfillment, and the per-user order index."""

import logging
import math
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardmarket.constants import (
    BUYER_COMPLETABLE_STATUSES,
    BUYER_COMPLETION_DELAY,
    LISTING_ACTIVE,
    LISTING_SOLD,
    OFFER_ACCEPTED,
    ORDER_AWAITING_PAYMENT,
    ORDER_COMPLETED,
    ORDER_ID_ATTEMPTS,
    ORDER_PENDING,
    PENDING_SHIPPING_ADDRESS,
    PICKUP_ADDRESS,
    PICKUP_CONFIRMABLE_STATUSES,
    SHIPPING_ADDRESS_FIELDS,
)
from cardmarket.errors import AuthorizationError, NotFoundError, ValidationError
from cardmarket.models import Listing, Offer, Order, User, UserOrderIndex
from cardmarket.services.offers import close_open_offers
from cardmarket.services.outbox import Outbox
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)

ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"


def generate_order_id(now: Optional[datetime] = None) -> str:
    """Payment-intent style id: ``pi_<epoch millis>_<12 hex chars>``."""
    now = now or utcnow()
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"pi_{millis}_{secrets.token_hex(6)}"


def shipping_address_for(offer: Offer) -> dict:
    if offer.is_pickup:
        return dict(PICKUP_ADDRESS)
    if offer.shipping_address:
        return dict(offer.shipping_address)
    return dict(PENDING_SHIPPING_ADDRESS)


def index_order(db: Session, order: Order) -> None:
    """Write the buyer and seller index rows for ``order``. The only writer of the index."""
    db.add(UserOrderIndex(user_id=order.buyer_id, order_id=order.id, role=ROLE_BUYER, created_at=order.created_at))
    db.add(UserOrderIndex(user_id=order.seller_id, order_id=order.id, role=ROLE_SELLER, created_at=order.created_at))


def create_order_from_offer(
    db: Session,
    offer_id: int,
    caller: User,
    mark_as_sold: bool = False,
    outbox: Optional[Outbox] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Materialize an order from an accepted offer.

    Only the offer's seller may do this, and only once per offer: the unique
    ``orders.offer_id`` rejects a second order. The listing must still be on
    the market; ``mark_as_sold`` takes it off and closes its other offers.
    """
    now = now or utcnow()
    outbox = outbox or Outbox(db)

    offer = db.get(Offer, offer_id)
    if offer is None:
        raise NotFoundError("Offer not found")
    if offer.seller_id != caller.id:
        raise AuthorizationError("Only the seller can create an order for this offer")
    if offer.status != OFFER_ACCEPTED:
        raise ValidationError("Offer must be accepted before creating an order")
    if db.query(Order.id).filter(Order.offer_id == offer.id).first() is not None:
        raise ValidationError("An order already exists for this offer")
    listing = db.get(Listing, offer.listing_id)
    if listing is None or listing.status != LISTING_ACTIVE:
        raise ValidationError("Listing is no longer available")

    seller = db.get(User, offer.seller_id)

    for attempt in range(1, ORDER_ID_ATTEMPTS + 1):
        order = Order(
            id=generate_order_id(now),
            listing_id=offer.listing_id,
            buyer_id=offer.buyer_id,
            seller_id=offer.seller_id,
            offer_id=offer.id,
            amount=offer.amount,
            status=ORDER_PENDING if offer.is_pickup else ORDER_AWAITING_PAYMENT,
            is_pickup=offer.is_pickup,
            shipping_address=shipping_address_for(offer),
            listing_snapshot=dict(offer.listing_snapshot or {}),
            seller_has_stripe_account=bool(seller and seller.stripe_connect_account_id),
            payment_required=not offer.is_pickup,
            created_at=now,
            updated_at=now,
        )
        db.add(order)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            if db.query(Order.id).filter(Order.offer_id == offer_id).first() is not None:
                raise ValidationError("An order already exists for this offer")
            logger.warning(f"Order id collision on attempt {attempt} for offer {offer_id}")
            offer = db.get(Offer, offer_id)
            listing = db.get(Listing, offer.listing_id)
            continue
        break
    else:
        raise ValidationError("Could not allocate an order id, please try again")

    index_order(db, order)
    offer.cleared = True
    offer.updated_at = now

    if mark_as_sold:
        listing.status = LISTING_SOLD
        listing.sold_to = offer.buyer_id
        listing.updated_at = now
        close_open_offers(db, listing.id, now)

    title = order.listing_snapshot.get("title", "your item")
    outbox.notify(
        order.buyer_id,
        "order",
        "Order Created",
        f"Your order for \"{title}\" (${order.amount:.2f}) has been created",
        data={"orderId": order.id, "actionUrl": f"/dashboard/orders/{order.id}"},
    )
    outbox.notify(
        order.seller_id,
        "order",
        "New Sale",
        f"You sold \"{title}\" for ${order.amount:.2f}",
        data={"orderId": order.id, "actionUrl": f"/dashboard/orders/{order.id}"},
    )

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("An order already exists for this offer")

    logger.info(
        f"Order {order.id} created from offer {offer.id}: amount={order.amount} "
        f"pickup={order.is_pickup} markedSold={mark_as_sold}"
    )
    return order


def orders_for_user(db: Session, user_id: str, role: Optional[str] = None) -> list[Order]:
    query = db.query(Order).join(UserOrderIndex, UserOrderIndex.order_id == Order.id).filter(
        UserOrderIndex.user_id == user_id
    )
    if role:
        query = query.filter(UserOrderIndex.role == role)
    return query.order_by(Order.created_at.desc()).all()


def get_order_for_user(db: Session, order_id: str, user_id: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if user_id not in (order.buyer_id, order.seller_id):
        raise AuthorizationError("You do not have access to this order")
    return order


def _order_url(order: Order) -> str:
    return f"/dashboard/orders/{order.id}"


def submit_shipping_address(
    db: Session,
    order_id: str,
    buyer: User,
    address: dict,
    outbox: Optional[Outbox] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Replace the pending placeholder (or an earlier address) with the buyer's shipping address."""
    now = now or utcnow()
    outbox = outbox or Outbox(db)
    order = get_order_for_user(db, order_id, buyer.id)
    if order.buyer_id != buyer.id:
        raise AuthorizationError("Only the buyer can provide a shipping address")
    if order.is_pickup:
        raise ValidationError("Local pickup orders do not need a shipping address")
    if order.status == ORDER_COMPLETED:
        raise ValidationError("Order is already completed")

    cleaned = {key: str(value).strip() for key, value in address.items() if value is not None}
    missing = [field for field in SHIPPING_ADDRESS_FIELDS if not cleaned.get(field)]
    if missing:
        raise ValidationError(f"Missing required shipping fields: {', '.join(missing)}")

    shipping_address = {field: cleaned[field] for field in SHIPPING_ADDRESS_FIELDS}
    if cleaned.get("line2"):
        shipping_address["line2"] = cleaned["line2"]
    order.shipping_address = shipping_address
    order.updated_at = now

    outbox.notify(
        order.seller_id,
        "order",
        "Shipping Address Added",
        f"The buyer added a shipping address for \"{order.listing_snapshot.get('title', 'your item')}\"",
        data={"orderId": order.id, "actionUrl": _order_url(order)},
    )
    db.commit()
    logger.info(f"Shipping address set on order {order.id} by buyer {buyer.id}")
    return order


def confirm_pickup(
    db: Session,
    order_id: str,
    user: User,
    outbox: Optional[Outbox] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Record one side's confirmation of a local pickup; the second confirmation completes the order."""
    now = now or utcnow()
    outbox = outbox or Outbox(db)
    order = get_order_for_user(db, order_id, user.id)
    if not order.is_pickup:
        raise ValidationError("This operation is only valid for local pickup orders")
    if order.status == ORDER_COMPLETED:
        raise ValidationError("Pickup has already been completed for this order")
    if order.status not in PICKUP_CONFIRMABLE_STATUSES:
        raise ValidationError(f"Pickup cannot be confirmed while the order is {order.status}")

    role = ROLE_BUYER if user.id == order.buyer_id else ROLE_SELLER
    flag = "buyer_pickup_confirmed" if role == ROLE_BUYER else "seller_pickup_confirmed"
    if getattr(order, flag):
        raise ValidationError(f"{role.capitalize()} has already confirmed pickup")
    setattr(order, flag, True)
    order.updated_at = now

    other = order.seller_id if role == ROLE_BUYER else order.buyer_id
    title = order.listing_snapshot.get("title", "your item")
    if order.buyer_pickup_confirmed and order.seller_pickup_confirmed:
        order.status = ORDER_COMPLETED
        order.completed_at = now
        order.completed_by = user.id
        outbox.notify(
            other,
            "order",
            "Pickup Completed",
            f"Pickup of \"{title}\" is complete",
            data={"orderId": order.id, "actionUrl": _order_url(order)},
        )
    else:
        outbox.notify(
            other,
            "order",
            "Pickup Confirmation Needed",
            f"The {role} confirmed the pickup of \"{title}\". Please confirm on your side.",
            data={"orderId": order.id, "actionUrl": _order_url(order)},
        )
    db.commit()
    logger.info(f"Pickup confirmed on order {order.id} by {role} {user.id}: status={order.status}")
    return order


def complete_by_buyer(
    db: Session,
    order_id: str,
    buyer: User,
    outbox: Optional[Outbox] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Let the buyer close a shipped order once ``BUYER_COMPLETION_DELAY`` has passed."""
    now = now or utcnow()
    outbox = outbox or Outbox(db)
    order = get_order_for_user(db, order_id, buyer.id)
    if order.buyer_id != buyer.id:
        raise AuthorizationError("Only the buyer can complete this order")
    if order.status == ORDER_COMPLETED:
        raise ValidationError("Order is already completed")
    if order.is_pickup:
        raise ValidationError("Local pickup orders are completed by confirming the pickup")
    if order.status not in BUYER_COMPLETABLE_STATUSES:
        raise ValidationError(f"Order cannot be completed while it is {order.status}")
    if order.shipping_address == PENDING_SHIPPING_ADDRESS:
        raise ValidationError("Add a shipping address before completing this order")

    remaining = order.created_at + BUYER_COMPLETION_DELAY - now
    if remaining.total_seconds() > 0:
        hours = math.ceil(remaining.total_seconds() / 3600)
        delay_hours = int(BUYER_COMPLETION_DELAY.total_seconds() // 3600)
        raise ValidationError(
            f"You can complete this order in {hours} hour(s). "
            f"Buyer completion is available {delay_hours} hours after the order is created."
        )

    order.status = ORDER_COMPLETED
    order.completed_at = now
    order.completed_by = buyer.id
    order.updated_at = now

    outbox.notify(
        order.seller_id,
        "order",
        "Order Completed by Buyer",
        f"The buyer marked the order for \"{order.listing_snapshot.get('title', 'your item')}\" as received",
        data={"orderId": order.id, "actionUrl": _order_url(order)},
    )
    db.commit()
    logger.info(f"Order {order.id} completed by buyer {buyer.id}")
    return order


def rebuild_order_index(db: Session) -> dict:
    """Reconcile ``user_order_index`` with ``orders``: add missing rows, drop orphans."""
    expected = set()
    for order_id, buyer_id, seller_id in db.query(Order.id, Order.buyer_id, Order.seller_id).all():
        expected.add((buyer_id, order_id, ROLE_BUYER))
        expected.add((seller_id, order_id, ROLE_SELLER))

    existing = {
        (row.user_id, row.order_id, row.role): row
        for row in db.query(UserOrderIndex).all()
    }

    removed = 0
    for key, row in existing.items():
        if key not in expected:
            db.delete(row)
            removed += 1

    added = 0
    for user_id, order_id, role in expected - set(existing):
        db.add(UserOrderIndex(user_id=user_id, order_id=order_id, role=role))
        added += 1

    db.commit()
    logger.info(f"Order index reconciled: {added} added, {removed} removed, {len(expected)} expected")
    return {"added": added, "removed": removed, "total": len(expected)}
