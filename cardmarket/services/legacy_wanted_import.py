"""One-time import of wanted posts from the legacy realtime-database export.

The legacy store kept wanted posts under three different paths over time
(``wantedPosts``, ``wanted/posts`` and directly under ``wanted``). This
module walks all three, de-duplicates by legacy id (``wantedPosts`` wins) and
writes each post once into ``wanted_posts``. Re-running is a no-op because
``legacy_id`` is unique.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Optional

from sqlalchemy.orm import Session

from cardmarket.models import User, WantedPost
from cardmarket.timestamps import to_instant

logger = logging.getLogger(__name__)

# In priority order
LEGACY_PATHS = (("wantedPosts",), ("wanted", "posts"), ("wanted",))

# Keys under ``wanted`` that are containers, not posts
RESERVED_KEYS = {"posts"}


def _walk(export: dict, path: tuple) -> dict:
    node: Any = export
    for key in path:
        if not isinstance(node, dict):
            return {}
        node = node.get(key)
    return node if isinstance(node, dict) else {}


def _decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def iter_legacy_posts(export: dict) -> Iterator[tuple[str, dict]]:
    """Yield ``(legacy_id, raw_post)`` once per id across all legacy paths."""
    seen: set[str] = set()
    for path in LEGACY_PATHS:
        for legacy_id, raw in _walk(export, path).items():
            if path == ("wanted",) and legacy_id in RESERVED_KEYS:
                continue
            if legacy_id in seen:
                continue
            if not isinstance(raw, dict) or not raw.get("title") or not raw.get("game"):
                logger.warning(f"Skipping invalid legacy wanted post {'/'.join(path)}/{legacy_id}")
                continue
            seen.add(legacy_id)
            yield legacy_id, raw


def _ensure_user(db: Session, user_id: str, username: str) -> None:
    if db.get(User, user_id) is None:
        db.add(User(id=user_id, username=username))
        db.flush()


def import_legacy_wanted_posts(db: Session, export: dict, dry_run: bool = False) -> dict:
    """Copy legacy posts into ``wanted_posts``. Returns counts."""
    imported = skipped_existing = 0
    for legacy_id, raw in iter_legacy_posts(export):
        if db.query(WantedPost.id).filter(WantedPost.legacy_id == legacy_id).first() is not None:
            skipped_existing += 1
            continue

        user_id = str(raw.get("userId") or "unknown")
        username = raw.get("userName") or "Anonymous User"
        price_range = raw.get("priceRange") if isinstance(raw.get("priceRange"), dict) else {}
        created_at = to_instant(raw.get("createdAt"))

        if dry_run:
            imported += 1
            continue

        _ensure_user(db, user_id, username)
        db.add(
            WantedPost(
                user_id=user_id,
                username=username,
                title=raw["title"],
                description=raw.get("detailedDescription") or raw.get("description") or None,
                game_category=raw["game"],
                condition=raw.get("condition") or None,
                budget_min=_decimal(price_range.get("min")),
                budget_max=_decimal(price_range.get("max")),
                location=raw.get("location") or None,
                status="active",
                legacy_id=legacy_id,
                created_at=created_at,
                updated_at=created_at,
            )
        )
        imported += 1

    if dry_run:
        db.rollback()
    else:
        db.commit()

    logger.info(f"Legacy wanted post import: imported={imported} alreadyPresent={skipped_existing} dryRun={dry_run}")
    return {"imported": imported, "alreadyPresent": skipped_existing, "dryRun": dry_run}
