"""Short id -> listing lookup used by shareable URLs."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, utcnow


class ShortIdMapping(Base):
    __tablename__ = "short_id_mappings"

    short_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    listing_id: Mapped[int] = mapped_column(nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ShortIdMapping(short_id='{self.short_id}', listing_id={self.listing_id})>"
