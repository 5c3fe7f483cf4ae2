"""Routes for the signed-in user: tier, premium restore, notifications."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cardmarket.auth import get_current_user
from cardmarket.database import get_db
from cardmarket.errors import NotFoundError
from cardmarket.models import Notification, User
from cardmarket.services.account_tier import determine_account_tier, listing_duration, offer_expiration_choices
from cardmarket.services.listing_lifecycle import ListingLifecycle

router = APIRouter()


@router.get("/me/tier")
async def my_tier(user: User = Depends(get_current_user)):
    tier = determine_account_tier(user)
    return {
        "userId": user.id,
        "accountTier": tier,
        "listingDurationHours": int(listing_duration(tier).total_seconds() // 3600),
        "offerExpirationHours": list(offer_expiration_choices(tier)),
    }


@router.post("/me/restore-listings")
async def restore_listings(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Bring back listings archived under the free duration once the user is premium."""
    return ListingLifecycle(db).restore_incorrectly_archived(user)


@router.get("/me/notifications")
async def my_notifications(
    unreadOnly: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unreadOnly:
        query = query.filter(Notification.read.is_(False))
    notifications = query.order_by(Notification.created_at.desc()).limit(limit).all()
    return {"notifications": [n.to_dict() for n in notifications]}


@router.post("/me/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user.id:
        raise NotFoundError("Notification not found")
    notification.read = True
    db.commit()
    return {"success": True}
