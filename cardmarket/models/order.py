"""Order model, materialized from an accepted offer."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class Order(Base):
    """A purchase agreed through an accepted offer."""

    __tablename__ = "orders"

    # Synthetic payment-intent style id ("pi_<millis>_<hex>")
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    listing_id: Mapped[int] = mapped_column(nullable=False, index=True)
    buyer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # At most one order per offer.
    offer_id: Mapped[Optional[int]] = mapped_column(unique=True, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    is_pickup: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    listing_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    seller_has_stripe_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Local pickup completes once both sides confirm the hand-over
    buyer_pickup_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_pickup_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listingId": self.listing_id,
            "buyerId": self.buyer_id,
            "sellerId": self.seller_id,
            "offerId": self.offer_id,
            "amount": float(self.amount),
            "status": self.status,
            "isPickup": self.is_pickup,
            "shippingAddress": self.shipping_address,
            "listingSnapshot": self.listing_snapshot,
            "sellerHasStripeAccount": self.seller_has_stripe_account,
            "paymentRequired": self.payment_required,
            "buyerPickupConfirmed": self.buyer_pickup_confirmed,
            "sellerPickupConfirmed": self.seller_pickup_confirmed,
            "completedAt": isoformat(self.completed_at),
            "completedBy": self.completed_by,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Order(id='{self.id}', amount={self.amount}, status='{self.status}')>"


class UserOrderIndex(Base):
    """Per-user order lookup (buyer and seller rows), derived from ``orders``."""

    __tablename__ = "user_order_index"
    __table_args__ = (
        UniqueConstraint("user_id", "order_id", "role", name="uq_user_order_index_user_order_role"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False)  # buyer | seller
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<UserOrderIndex(user='{self.user_id}', order='{self.order_id}', role='{self.role}')>"
