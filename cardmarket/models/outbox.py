"""Outbox of pending side effects (emails, notifications)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class OutboxMessage(Base):
    """A side effect written in the same transaction as the state change that caused it."""

    __tablename__ = "outbox_messages"
    __table_args__ = (
        Index("ix_outbox_messages_status_next_attempt_at", "status", "next_attempt_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # email | notification
    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending | sent | dead
    attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "recipientId": self.recipient_id,
            "subject": self.subject,
            "status": self.status,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "nextAttemptAt": isoformat(self.next_attempt_at),
            "createdAt": isoformat(self.created_at),
            "sentAt": isoformat(self.sent_at),
        }

    def __repr__(self) -> str:
        return f"<OutboxMessage(id={self.id}, kind='{self.kind}', status='{self.status}')>"
