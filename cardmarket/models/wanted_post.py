"""Wanted post model ("looking for" posts created by buyers)."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class WantedPost(Base):
    """A buyer-initiated request for a card. Lives only in ``wanted_posts``."""

    __tablename__ = "wanted_posts"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    game_category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    condition: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    budget_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    budget_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    # Legacy document id, kept so re-running the import is a no-op
    legacy_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "title": self.title,
            "description": self.description,
            "gameCategory": self.game_category,
            "condition": self.condition,
            "budgetMin": float(self.budget_min) if self.budget_min is not None else None,
            "budgetMax": float(self.budget_max) if self.budget_max is not None else None,
            "location": self.location,
            "status": self.status,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<WantedPost(id={self.id}, title='{self.title}')>"
