"""Offer model: a buyer's proposal on a listing."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, Index, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class Offer(Base):
    """Represents a buyer proposal on a listing."""

    __tablename__ = "offers"
    __table_args__ = (
        # One pending offer per buyer per listing, enforced by the database.
        Index(
            "uq_offers_pending_buyer_listing",
            "buyer_id",
            "listing_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_offers_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Listings may be deleted while offers are kept for history, so no FK here.
    listing_id: Mapped[int] = mapped_column(nullable=False, index=True)
    buyer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    counter_offer: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    listing_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Fulfillment
    is_pickup: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_shipping_info: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    cleared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listingId": self.listing_id,
            "buyerId": self.buyer_id,
            "sellerId": self.seller_id,
            "amount": float(self.amount),
            "counterOffer": float(self.counter_offer) if self.counter_offer is not None else None,
            "listingSnapshot": self.listing_snapshot,
            "isPickup": self.is_pickup,
            "requiresShippingInfo": self.requires_shipping_info,
            "shippingAddress": self.shipping_address,
            "status": self.status,
            "cleared": self.cleared,
            "expiresAt": isoformat(self.expires_at),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Offer(id={self.id}, listing={self.listing_id}, amount={self.amount}, status='{self.status}')>"
