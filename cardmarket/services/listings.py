"""Listing creation, lookup, browse and owner edits."""

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cardmarket.constants import LISTING_ACTIVE, LISTING_ARCHIVED, LISTING_INACTIVE, LISTING_SOLD
from cardmarket.errors import AuthorizationError, NotFoundError, ValidationError
from cardmarket.models import Listing, ShortIdMapping, User
from cardmarket.services.account_tier import determine_account_tier
from cardmarket.services.listing_lifecycle import ListingLifecycle, calculate_expiration
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "newest": (Listing.created_at.desc(),),
    "price_asc": (Listing.price.asc(), Listing.created_at.desc()),
    "price_desc": (Listing.price.desc(), Listing.created_at.desc()),
}

# Fields an owner may change after creation
EDITABLE_FIELDS = (
    "title",
    "description",
    "price",
    "offers_only",
    "condition",
    "quantity",
    "image_urls",
    "is_graded",
    "grading_company",
    "grade",
)

SHORT_ID_ATTEMPTS = 5


class ListingService:
    def __init__(self, db: Session):
        self.db = db
        self.lifecycle = ListingLifecycle(db)

    def _new_short_id(self) -> str:
        for _ in range(SHORT_ID_ATTEMPTS):
            candidate = secrets.token_hex(4)
            if self.db.get(ShortIdMapping, candidate) is None:
                return candidate
        raise ValidationError("Could not allocate a short id, please try again")

    def create_listing(self, owner: User, data: dict, now: Optional[datetime] = None) -> Listing:
        now = now or utcnow()
        if not data.get("title") or not data.get("game_category"):
            raise ValidationError("Missing required fields")

        price = data.get("price")
        offers_only = bool(data.get("offers_only"))
        if price is None and not offers_only:
            raise ValidationError("A price is required unless the listing accepts offers only")
        if price is not None and Decimal(str(price)) <= 0:
            raise ValidationError("Price must be a positive number")

        tier = determine_account_tier(owner, now)
        short_id = self._new_short_id()
        listing = Listing(
            short_id=short_id,
            user_id=owner.id,
            username=owner.username,
            title=data["title"],
            description=data.get("description"),
            price=Decimal(str(price)) if price is not None else None,
            offers_only=offers_only,
            condition=data.get("condition"),
            game_category=data["game_category"],
            quantity=data.get("quantity") or 1,
            image_urls=list(data.get("image_urls") or []),
            is_graded=bool(data.get("is_graded")),
            grading_company=data.get("grading_company"),
            grade=Decimal(str(data["grade"])) if data.get("grade") is not None else None,
            status=LISTING_ACTIVE,
            expires_at=calculate_expiration(now, tier),
            created_at=now,
            updated_at=now,
        )
        self.db.add(listing)
        self.db.flush()
        self.db.add(ShortIdMapping(short_id=short_id, listing_id=listing.id, created_at=now))
        self.db.commit()

        logger.info(
            f"Listing {listing.id} created by {owner.id}: tier={tier} expiresAt={listing.expires_at.isoformat()}"
        )
        return listing

    def get_listing(self, listing_id: int, now: Optional[datetime] = None) -> Listing:
        """Fetch a listing, archiving it first if it expired since the last sweep."""
        listing = self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if self.lifecycle.refresh(listing, now) is not None:
            self.db.commit()
        return listing

    def get_by_short_id(self, short_id: str, now: Optional[datetime] = None) -> Listing:
        mapping = self.db.get(ShortIdMapping, short_id)
        if mapping is None:
            raise NotFoundError("Listing not found")
        return self.get_listing(mapping.listing_id, now)

    def browse(
        self,
        q: Optional[str] = None,
        game_category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "newest",
        limit: int = 20,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> tuple[list[Listing], int]:
        """Active, unexpired listings matching the filters, plus the total count."""
        now = now or utcnow()
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort '{sort}'")

        query = (
            self.db.query(Listing)
            .filter(Listing.status == LISTING_ACTIVE)
            .filter(or_(Listing.expires_at.is_(None), Listing.expires_at > now))
        )
        if game_category:
            query = query.filter(Listing.game_category == game_category)
        if q:
            pattern = f"%{q.strip()}%"
            query = query.filter(or_(Listing.title.ilike(pattern), Listing.description.ilike(pattern)))
        if min_price is not None:
            query = query.filter(Listing.price >= min_price)
        if max_price is not None:
            query = query.filter(Listing.price <= max_price)

        total = query.count()
        listings = query.order_by(*SORT_ORDERS[sort]).offset(offset).limit(limit).all()
        return listings, total

    def listings_for_user(self, user_id: str, status: Optional[str] = None) -> list[Listing]:
        query = self.db.query(Listing).filter(Listing.user_id == user_id)
        if status:
            query = query.filter(Listing.status == status)
        return query.order_by(Listing.created_at.desc()).all()

    def _owned(self, listing_id: int, user: User) -> Listing:
        listing = self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if listing.user_id != user.id:
            raise AuthorizationError("You can only modify your own listings")
        return listing

    def update_listing(self, listing_id: int, user: User, changes: dict, now: Optional[datetime] = None) -> Listing:
        now = now or utcnow()
        listing = self._owned(listing_id, user)
        if listing.status in (LISTING_ARCHIVED, LISTING_SOLD):
            raise ValidationError(f"Cannot edit a listing that is {listing.status}")

        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(listing, field, changes[field])
        if "status" in changes:
            if changes["status"] not in (LISTING_ACTIVE, LISTING_INACTIVE):
                raise ValidationError("Status can only be set to active or inactive")
            listing.status = changes["status"]
        listing.updated_at = now
        self.db.commit()
        logger.info(f"Listing {listing.id} updated by owner: {sorted(changes)}")
        return listing

    def archive_listing(self, listing_id: int, user: User, now: Optional[datetime] = None) -> Listing:
        listing = self._owned(listing_id, user)
        self.lifecycle.archive(listing, now=now)
        self.db.commit()
        return listing
