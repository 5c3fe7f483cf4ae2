"""Listing model for cards offered for sale."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class Listing(Base):
    """Represents one item for sale, owned by its creator."""

    __tablename__ = "listings"
    __table_args__ = (
        Index("ix_listings_status_expires_at", "status", "expires_at"),
        Index("ix_listings_status_delete_at", "status", "delete_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    short_id: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)

    # Owner (username denormalized for display)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    # Card details
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    offers_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    condition: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    game_category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(default=1, nullable=False)
    image_urls: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Grading
    is_graded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    grading_company: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    grade: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 1), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    original_created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expiration_reason: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    # TTL marker: archived_at + 7 days
    delete_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sold_to: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Moderation
    moderated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    moderation_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    # Imported rows may carry no update stamp; readers fall back to created_at
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, default=utcnow, nullable=True)

    owner: Mapped["User"] = relationship("User")

    def snapshot(self) -> dict:
        """Point-in-time copy embedded in offers and orders."""
        return {
            "title": self.title or "Unknown Listing",
            "price": float(self.price) if self.price is not None else 0,
            "imageUrl": self.image_urls[0] if self.image_urls else "",
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shortId": self.short_id,
            "userId": self.user_id,
            "username": self.username,
            "title": self.title,
            "description": self.description,
            "price": float(self.price) if self.price is not None else None,
            "offersOnly": self.offers_only,
            "condition": self.condition,
            "gameCategory": self.game_category,
            "quantity": self.quantity,
            "imageUrls": list(self.image_urls or []),
            "isGraded": self.is_graded,
            "gradingCompany": self.grading_company,
            "grade": float(self.grade) if self.grade is not None else None,
            "status": self.status,
            "expiresAt": isoformat(self.expires_at),
            "archivedAt": isoformat(self.archived_at),
            "expirationReason": self.expiration_reason,
            "deleteAt": isoformat(self.delete_at),
            "soldTo": self.sold_to,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, title='{self.title}', status='{self.status}')>"
