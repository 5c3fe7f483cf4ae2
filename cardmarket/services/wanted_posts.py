"""Wanted ("looking for") posts, stored only in ``wanted_posts``."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from cardmarket.errors import AuthorizationError, NotFoundError, ValidationError
from cardmarket.models import User, WantedPost
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "game_category", "condition", "budget_min", "budget_max", "location", "status")
WANTED_STATUSES = ("active", "fulfilled", "closed")


def _validate_budget(budget_min, budget_max) -> None:
    for value in (budget_min, budget_max):
        if value is not None and Decimal(str(value)) < 0:
            raise ValidationError("Budget cannot be negative")
    if budget_min is not None and budget_max is not None and Decimal(str(budget_min)) > Decimal(str(budget_max)):
        raise ValidationError("Minimum budget cannot exceed maximum budget")


def create_wanted_post(db: Session, user: User, data: dict) -> WantedPost:
    if not data.get("title") or not data.get("game_category"):
        raise ValidationError("Missing required fields")
    _validate_budget(data.get("budget_min"), data.get("budget_max"))

    now = utcnow()
    post = WantedPost(
        user_id=user.id,
        username=user.username,
        title=data["title"],
        description=data.get("description"),
        game_category=data["game_category"],
        condition=data.get("condition"),
        budget_min=data.get("budget_min"),
        budget_max=data.get("budget_max"),
        location=data.get("location"),
        status="active",
        created_at=now,
        updated_at=now,
    )
    db.add(post)
    db.commit()
    logger.info(f"Wanted post {post.id} created by {user.id}")
    return post


def get_wanted_post(db: Session, post_id: int) -> WantedPost:
    post = db.get(WantedPost, post_id)
    if post is None:
        raise NotFoundError("Wanted post not found")
    return post


def list_wanted_posts(
    db: Session,
    game_category: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[str] = "active",
    limit: int = 50,
    offset: int = 0,
) -> list[WantedPost]:
    query = db.query(WantedPost)
    if status:
        query = query.filter(WantedPost.status == status)
    if game_category:
        query = query.filter(WantedPost.game_category == game_category)
    if user_id:
        query = query.filter(WantedPost.user_id == user_id)
    return query.order_by(WantedPost.created_at.desc()).offset(offset).limit(limit).all()


def _owned(db: Session, post_id: int, user: User) -> WantedPost:
    post = get_wanted_post(db, post_id)
    if post.user_id != user.id:
        raise AuthorizationError("You can only modify your own wanted posts")
    return post


def update_wanted_post(db: Session, post_id: int, user: User, changes: dict) -> WantedPost:
    post = _owned(db, post_id, user)
    if "status" in changes and changes["status"] not in WANTED_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(WANTED_STATUSES)}")
    _validate_budget(changes.get("budget_min", post.budget_min), changes.get("budget_max", post.budget_max))
    for field in EDITABLE_FIELDS:
        if field in changes:
            setattr(post, field, changes[field])
    post.updated_at = utcnow()
    db.commit()
    return post


def delete_wanted_post(db: Session, post_id: int, user: User) -> None:
    post = _owned(db, post_id, user)
    db.delete(post)
    db.commit()
    logger.info(f"Wanted post {post_id} deleted by {user.id}")
