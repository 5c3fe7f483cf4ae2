"""Favorite listing routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cardmarket.auth import get_current_user
from cardmarket.database import get_db
from cardmarket.models import User
from cardmarket.services import favorites

router = APIRouter()


@router.get("")
async def list_favorites(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"listings": [listing.to_dict() for listing in favorites.list_favorites(db, user.id)]}


@router.put("/{listing_id}")
async def add_favorite(listing_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    favorites.add_favorite(db, user.id, listing_id)
    return {"success": True, "listingId": listing_id}


@router.delete("/{listing_id}")
async def remove_favorite(listing_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    removed = favorites.remove_favorite(db, user.id, listing_id)
    return {"success": True, "removed": removed}
