"""Favorite listings per user."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardmarket.errors import NotFoundError
from cardmarket.models import Favorite, Listing

logger = logging.getLogger(__name__)


def add_favorite(db: Session, user_id: str, listing_id: int) -> Favorite:
    if db.get(Listing, listing_id) is None:
        raise NotFoundError("Listing not found")

    existing = db.query(Favorite).filter_by(user_id=user_id, listing_id=listing_id).first()
    if existing is not None:
        return existing

    favorite = Favorite(user_id=user_id, listing_id=listing_id)
    db.add(favorite)
    try:
        db.commit()
    except IntegrityError:
        # Added concurrently; the stored row is the same favorite
        db.rollback()
        return db.query(Favorite).filter_by(user_id=user_id, listing_id=listing_id).one()
    return favorite


def remove_favorite(db: Session, user_id: str, listing_id: int) -> bool:
    removed = db.query(Favorite).filter_by(user_id=user_id, listing_id=listing_id).delete(synchronize_session=False)
    db.commit()
    return bool(removed)


def list_favorites(db: Session, user_id: str) -> list[Listing]:
    return [
        favorite.listing
        for favorite in db.query(Favorite).filter_by(user_id=user_id).order_by(Favorite.created_at.desc()).all()
        if favorite.listing is not None
    ]
