"""Background job run log."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardmarket.database import Base
from cardmarket.timestamps import UTCDateTime, isoformat, utcnow


class JobRun(Base):
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(32), default="schedule", nullable=False)
    ran_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    ok: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "jobName": self.job_name,
            "trigger": self.trigger,
            "ranAt": isoformat(self.ran_at),
            "ok": self.ok,
            "durationMs": self.duration_ms,
            "summary": self.summary or {},
            "error": self.error or "",
        }
