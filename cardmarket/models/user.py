"""Marketplace user model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, utcnow


class User(Base):
    """A buyer/seller account, keyed by the identity provider's user id."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Subscription / tier
    account_tier: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    subscription_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Payouts
    stripe_connect_account_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', username='{self.username}', tier='{self.account_tier}')>"
