"""Listing routes: browse, CRUD, and the lifecycle maintenance endpoints."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cardmarket.auth import get_current_user, require_admin, require_cron_or_admin
from cardmarket.constants import BACKUP_SCAN_LIMIT, DEFAULT_MAX_DELETIONS
from cardmarket.database import get_db
from cardmarket.models import User
from cardmarket.services.listing_lifecycle import ListingLifecycle
from cardmarket.services.listings import ListingService

router = APIRouter()


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    offersOnly: bool = False
    condition: Optional[str] = None
    gameCategory: str = Field(..., min_length=1, max_length=50)
    quantity: int = Field(1, ge=1)
    imageUrls: list[str] = []
    isGraded: bool = False
    gradingCompany: Optional[str] = None
    grade: Optional[Decimal] = Field(None, ge=1, le=10)


class ListingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    offersOnly: Optional[bool] = None
    condition: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)
    imageUrls: Optional[list[str]] = None
    isGraded: Optional[bool] = None
    gradingCompany: Optional[str] = None
    grade: Optional[Decimal] = Field(None, ge=1, le=10)
    status: Optional[str] = None


class CleanupRequest(BaseModel):
    listingId: Optional[int] = None


class BackupCleanupRequest(BaseModel):
    emergencyOnly: bool = False
    reason: str = "manual_trigger"
    maxDeletions: int = Field(DEFAULT_MAX_DELETIONS, ge=1, le=BACKUP_SCAN_LIMIT)


# camelCase request field -> model attribute
FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "price": "price",
    "offersOnly": "offers_only",
    "condition": "condition",
    "gameCategory": "game_category",
    "quantity": "quantity",
    "imageUrls": "image_urls",
    "isGraded": "is_graded",
    "gradingCompany": "grading_company",
    "grade": "grade",
    "status": "status",
}


def _to_fields(body: BaseModel, exclude_unset: bool = False) -> dict:
    return {FIELD_NAMES[key]: value for key, value in body.model_dump(exclude_unset=exclude_unset).items()}


def _with_timer(listing, lifecycle: ListingLifecycle) -> dict:
    data = listing.to_dict()
    data["remainingSeconds"] = lifecycle.remaining_seconds(listing)
    return data


# ---------------------------------------------------------------------------
# Lifecycle maintenance (cron / operator)
# ---------------------------------------------------------------------------


@router.post("/cleanup-inactive", dependencies=[Depends(require_cron_or_admin)])
@router.post("/cleanup-inactive-listings", dependencies=[Depends(require_cron_or_admin)])
async def cleanup_inactive_listings(
    body: Optional[CleanupRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Archive expired listings and delete archived listings past their TTL.

    Both paths run the same sweep the scheduler runs. ``listingId`` limits
    the run to one listing.
    """
    listing_id = body.listingId if body else None
    result = ListingLifecycle(db).sweep(listing_id=listing_id)
    return {
        "message": "Cleanup completed",
        "details": {
            "archived": result["archived"],
            "deleted": result["deleted"],
            "errors": result["errors"],
        },
        "result": result,
    }


@router.post("/backup-cleanup", dependencies=[Depends(require_admin)])
async def backup_cleanup(body: Optional[BackupCleanupRequest] = None, db: Session = Depends(get_db)):
    """Compensating deletion of archived listings the scheduled sweep missed."""
    body = body or BackupCleanupRequest()
    return ListingLifecycle(db).backup_cleanup(
        emergency_only=body.emergencyOnly,
        reason=body.reason,
        max_deletions=body.maxDeletions,
    )


@router.get("/ttl-monitor", dependencies=[Depends(require_admin)])
async def ttl_monitor(db: Session = Depends(get_db)):
    """Overdue archived listings and the expected sweep schedule."""
    return ListingLifecycle(db).health()


# ---------------------------------------------------------------------------
# Browse / CRUD
# ---------------------------------------------------------------------------


@router.get("")
async def browse_listings(
    db: Session = Depends(get_db),
    q: Optional[str] = None,
    gameCategory: Optional[str] = None,
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    sort: str = "newest",
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    Browse active listings.

    Args:
        q: Text matched against title and description
        sort: 'newest', 'price_asc' or 'price_desc'
    """
    service = ListingService(db)
    listings, total = service.browse(
        q=q,
        game_category=gameCategory,
        min_price=minPrice,
        max_price=maxPrice,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    return {
        "listings": [_with_timer(listing, service.lifecycle) for listing in listings],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("", status_code=201)
async def create_listing(
    body: ListingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = ListingService(db)
    listing = service.create_listing(user, _to_fields(body))
    return {"success": True, "listing": _with_timer(listing, service.lifecycle)}


@router.get("/mine")
async def my_listings(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = ListingService(db)
    return {"listings": [_with_timer(listing, service.lifecycle) for listing in service.listings_for_user(user.id, status)]}


@router.get("/s/{short_id}")
async def get_listing_by_short_id(short_id: str, db: Session = Depends(get_db)):
    service = ListingService(db)
    listing = service.get_by_short_id(short_id)
    return {"listing": _with_timer(listing, service.lifecycle)}


@router.get("/{listing_id}")
async def get_listing(listing_id: int, db: Session = Depends(get_db)):
    service = ListingService(db)
    listing = service.get_listing(listing_id)
    return {"listing": _with_timer(listing, service.lifecycle)}


@router.patch("/{listing_id}")
async def update_listing(
    listing_id: int,
    body: ListingUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = ListingService(db)
    listing = service.update_listing(listing_id, user, _to_fields(body, exclude_unset=True))
    return {"success": True, "listing": _with_timer(listing, service.lifecycle)}


@router.post("/{listing_id}/archive")
async def archive_listing(
    listing_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    listing = ListingService(db).archive_listing(listing_id, user)
    return {"success": True, "listing": listing.to_dict()}
