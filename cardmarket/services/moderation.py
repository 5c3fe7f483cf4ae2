"""Operator moderation of listings."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from cardmarket.constants import REASON_MANUAL_ARCHIVE
from cardmarket.errors import NotFoundError, ValidationError
from cardmarket.models import Listing
from cardmarket.services.listing_lifecycle import ListingLifecycle
from cardmarket.services.outbox import Outbox
from cardmarket.timestamps import isoformat, utcnow

logger = logging.getLogger(__name__)

MODERATION_ACTIONS = ("archive", "restore", "delete")

OWNER_MESSAGES = {
    "archive": ("Listing Archived by Moderator", "Your listing \"{title}\" was archived by a moderator. Reason: {reason}"),
    "restore": ("Listing Restored", "Your listing \"{title}\" has been restored by a moderator."),
    "delete": ("Listing Removed", "Your listing \"{title}\" was removed by a moderator. Reason: {reason}"),
}


def moderate_listing(
    db: Session,
    listing_id: int,
    action: str,
    reason: str,
    moderator_id: Optional[str] = None,
    outbox: Optional[Outbox] = None,
) -> dict:
    """Archive, restore or delete a listing on an operator's behalf and tell the owner."""
    if action not in MODERATION_ACTIONS:
        raise ValidationError("Invalid action. Must be archive, restore, or delete")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required")

    listing = db.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError("Listing not found")

    now = utcnow()
    lifecycle = ListingLifecycle(db)
    outbox = outbox or Outbox(db)
    owner_id, title = listing.user_id, listing.title
    details = {
        "action": action,
        "reason": reason.strip(),
        "moderatorId": moderator_id,
        "moderatedAt": isoformat(now),
        "previousStatus": listing.status,
    }

    if action == "archive":
        lifecycle.archive(listing, reason=REASON_MANUAL_ARCHIVE, now=now)
    elif action == "restore":
        lifecycle.restore(listing, now=now)
    else:
        lifecycle.delete(listing)

    if action != "delete":
        listing.moderated_at = now
        listing.moderation_details = details

    subject, template = OWNER_MESSAGES[action]
    outbox.notify(
        owner_id,
        "moderation",
        subject,
        template.format(title=title, reason=details["reason"]),
        data={"listingId": listing_id, "action": action, "actionUrl": "/dashboard/listings"},
    )
    db.commit()

    logger.info(f"Moderation: {action} listing {listing_id} by {moderator_id or 'admin-secret'} ({details['reason']})")
    return {"success": True, "listingId": listing_id, "action": action, "details": details}
