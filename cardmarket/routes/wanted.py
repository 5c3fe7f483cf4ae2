"""Wanted post routes."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cardmarket.auth import get_current_user
from cardmarket.database import get_db
from cardmarket.models import User
from cardmarket.services import wanted_posts

router = APIRouter()


class WantedPostCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    gameCategory: str = Field(..., min_length=1, max_length=50)
    condition: Optional[str] = None
    budgetMin: Optional[Decimal] = None
    budgetMax: Optional[Decimal] = None
    location: Optional[str] = None


class WantedPostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    gameCategory: Optional[str] = None
    condition: Optional[str] = None
    budgetMin: Optional[Decimal] = None
    budgetMax: Optional[Decimal] = None
    location: Optional[str] = None
    status: Optional[str] = None


FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "gameCategory": "game_category",
    "condition": "condition",
    "budgetMin": "budget_min",
    "budgetMax": "budget_max",
    "location": "location",
    "status": "status",
}


def _to_fields(body: BaseModel, exclude_unset: bool = False) -> dict:
    return {FIELD_NAMES[key]: value for key, value in body.model_dump(exclude_unset=exclude_unset).items()}


@router.get("")
async def list_wanted_posts(
    gameCategory: Optional[str] = None,
    userId: Optional[str] = None,
    status: Optional[str] = "active",
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    posts = wanted_posts.list_wanted_posts(
        db, game_category=gameCategory, user_id=userId, status=status, limit=limit, offset=offset
    )
    return {"posts": [post.to_dict() for post in posts]}


@router.post("", status_code=201)
async def create_wanted_post(
    body: WantedPostCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    post = wanted_posts.create_wanted_post(db, user, _to_fields(body))
    return {"success": True, "post": post.to_dict()}


@router.get("/{post_id}")
async def get_wanted_post(post_id: int, db: Session = Depends(get_db)):
    return {"post": wanted_posts.get_wanted_post(db, post_id).to_dict()}


@router.patch("/{post_id}")
async def update_wanted_post(
    post_id: int,
    body: WantedPostUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    post = wanted_posts.update_wanted_post(db, post_id, user, _to_fields(body, exclude_unset=True))
    return {"success": True, "post": post.to_dict()}


@router.delete("/{post_id}")
async def delete_wanted_post(post_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    wanted_posts.delete_wanted_post(db, post_id, user)
    return {"success": True}
