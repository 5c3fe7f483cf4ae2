"""Timestamp normalization.

Every instant stored or compared in the service is a naive UTC ``datetime``.
Values coming from clients, legacy exports or the database all pass through
``parse_instant`` once; nothing downstream re-parses them.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current instant as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_epoch_ms(millis: float) -> Optional[datetime]:
    if not math.isfinite(millis):
        return None
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _seconds_field(value: Any) -> Optional[float]:
    """Read ``seconds`` / ``_seconds`` (+ optional nanoseconds) from a mapping or object."""
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
    else:
        seconds = getattr(value, "seconds", getattr(value, "_seconds", None))
        nanos = getattr(value, "nanoseconds", getattr(value, "_nanoseconds", 0))
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return None
    if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
        nanos = 0
    return float(seconds) + float(nanos) / 1e9


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Normalize any supported timestamp representation to naive UTC.

    Supported inputs:
        - ``datetime`` (naive values are taken as UTC) and ``date``
        - objects exposing ``to_date()`` / ``toDate()`` / ``to_datetime()``
        - mappings or objects with ``seconds`` / ``_seconds``
        - ISO-8601 strings (a trailing ``Z`` is accepted)
        - epoch milliseconds, as a number or a digit string

    Returns None when the value cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    for attr in ("to_date", "toDate", "to_datetime"):
        converter = getattr(value, attr, None)
        if callable(converter):
            try:
                return parse_instant(converter())
            except Exception as e:
                logger.warning(f"Timestamp converter {attr}() failed: {e}")
                return None

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_ms(float(value))

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return _from_epoch_ms(float(text))
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            return _naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None

    seconds = _seconds_field(value)
    if seconds is not None:
        return _from_epoch_ms(seconds * 1000.0)

    return None


def to_instant(value: Any, fallback: Optional[datetime] = None) -> datetime:
    """Parse ``value``; unparseable input is treated as just-created (``fallback`` or now)."""
    parsed = parse_instant(value)
    if parsed is not None:
        return parsed
    fallback = fallback or utcnow()
    logger.warning(f"Unparseable timestamp {value!r}; falling back to {fallback.isoformat()}")
    return fallback


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive-UTC instant for JSON responses."""
    if value is None:
        return None
    return value.replace(microsecond=(value.microsecond // 1000) * 1000).isoformat() + "Z"


class UTCDateTime(TypeDecorator):
    """DateTime column that accepts any supported representation and stores naive UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        parsed = parse_instant(value)
        if parsed is None:
            raise ValueError(f"Cannot store unparseable timestamp {value!r}")
        return parsed

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return _naive_utc(value)
