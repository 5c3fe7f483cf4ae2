"""Listing lifecycle: expiration, archival and permanent deletion.

Every entry point (scheduled sweep, cleanup endpoints, backup cleanup,
moderation, listing reads) goes through ``ListingLifecycle``:

    transition = lifecycle.evaluate_transition(listing, now)
    if transition:
        lifecycle.apply(transition)

``apply`` re-checks the listing's current status before writing, so running
the same transition twice (or two sweeps concurrently) is a no-op the second
time.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from cardmarket.constants import (
    ARCHIVE_RETENTION,
    BACKUP_CHUNK_SIZE,
    BACKUP_SCAN_LIMIT,
    CLEANUP_CHUNK_SIZE,
    DEFAULT_MAX_DELETIONS,
    EMERGENCY_OVERDUE_MINUTES,
    INACTIVE_TIMEOUT,
    LISTING_ACTIVE,
    LISTING_ARCHIVED,
    LISTING_EXPIRED,
    LISTING_INACTIVE,
    LISTING_SOLD,
    PREMIUM_TIER,
    REASON_INACTIVE_TIMEOUT,
    REASON_MANUAL_ARCHIVE,
    REASON_TIER_DURATION,
    SWEEP_INTERVAL_HOURS,
    SWEEP_MINUTE,
    SWEEP_STALE_MINUTES,
    WARNING_OVERDUE_MINUTES,
)
from cardmarket.errors import NotFoundError, ValidationError
from cardmarket.models import Favorite, JobRun, Listing, ShortIdMapping, User
from cardmarket.services.account_tier import determine_account_tier, listing_duration
from cardmarket.services.offers import close_open_offers
from cardmarket.timestamps import isoformat, to_instant, utcnow

logger = logging.getLogger(__name__)

ARCHIVE = "archive"
DELETE = "delete"

SWEEP_JOB_NAME = "listing_sweep"


@dataclass(frozen=True)
class Transition:
    """A lifecycle step decided for one listing at one instant."""

    listing_id: int
    action: str
    from_status: str
    evaluated_at: datetime
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    delete_at: Optional[datetime] = None
    account_tier: Optional[str] = None


def calculate_expiration(created_at: Any, account_tier: Optional[str]) -> datetime:
    """``created_at + tier duration`` (48h free, 720h premium).

    ``created_at`` may be any representation ``to_instant`` understands;
    unparseable values count as "created now".
    """
    return to_instant(created_at) + listing_duration(account_tier)


def deletion_time(listing: Listing) -> Optional[datetime]:
    """When an archived listing becomes eligible for permanent deletion."""
    if listing.delete_at is not None:
        return listing.delete_at
    if listing.archived_at is not None:
        return listing.archived_at + ARCHIVE_RETENTION
    return None


def last_sweep_time(now: datetime) -> datetime:
    """Most recent scheduled sweep slot (every 2 hours at :15 UTC) at or before ``now``."""
    slot = now.replace(hour=now.hour - now.hour % SWEEP_INTERVAL_HOURS, minute=SWEEP_MINUTE, second=0, microsecond=0)
    if slot > now:
        slot -= timedelta(hours=SWEEP_INTERVAL_HOURS)
    return slot


def next_sweep_time(now: datetime) -> datetime:
    return last_sweep_time(now) + timedelta(hours=SWEEP_INTERVAL_HOURS)


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


class ListingLifecycle:
    """Single owner of listing state transitions."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def account_tier_for(self, listing: Listing, now: datetime) -> str:
        owner = listing.owner if listing.owner is not None else self.db.get(User, listing.user_id)
        return determine_account_tier(owner, now)

    def expiration_for(self, listing: Listing, now: datetime) -> tuple[datetime, str]:
        """Stored ``expires_at`` wins; older rows fall back to created_at + tier duration."""
        tier = self.account_tier_for(listing, now)
        if listing.expires_at is not None:
            return listing.expires_at, tier
        return calculate_expiration(listing.created_at, tier), tier

    def remaining_seconds(self, listing: Listing, now: Optional[datetime] = None) -> int:
        """Countdown for timers: reaches 0 exactly at expiry and never goes negative."""
        if listing.status != LISTING_ACTIVE:
            return 0
        now = now or utcnow()
        expires_at, _ = self.expiration_for(listing, now)
        return max(0, int((expires_at - now).total_seconds()))

    def evaluate_transition(self, listing: Listing, now: datetime) -> Optional[Transition]:
        """Decide the next lifecycle step for ``listing`` at ``now``, or None."""
        status = listing.status

        if status == LISTING_ACTIVE:
            expires_at, tier = self.expiration_for(listing, now)
            if now > expires_at:
                return Transition(
                    listing_id=listing.id,
                    action=ARCHIVE,
                    from_status=status,
                    evaluated_at=now,
                    reason=REASON_TIER_DURATION,
                    expires_at=expires_at,
                    account_tier=tier,
                )
            return None

        if status == LISTING_INACTIVE:
            last_change = listing.updated_at or listing.created_at
            if last_change is not None and now - last_change >= INACTIVE_TIMEOUT:
                return Transition(
                    listing_id=listing.id,
                    action=ARCHIVE,
                    from_status=status,
                    evaluated_at=now,
                    reason=REASON_INACTIVE_TIMEOUT,
                )
            return None

        if status == LISTING_EXPIRED:
            return Transition(
                listing_id=listing.id,
                action=ARCHIVE,
                from_status=status,
                evaluated_at=now,
                reason=REASON_TIER_DURATION,
                expires_at=listing.expires_at,
            )

        if status == LISTING_ARCHIVED:
            delete_at = deletion_time(listing)
            if delete_at is None:
                logger.warning(f"Archived listing {listing.id} has no archivedAt; cannot schedule deletion")
                return None
            if now > delete_at:
                return Transition(
                    listing_id=listing.id,
                    action=DELETE,
                    from_status=status,
                    evaluated_at=now,
                    reason=listing.expiration_reason,
                    delete_at=delete_at,
                )
            return None

        return None

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply(self, transition: Transition) -> bool:
        """Write ``transition`` into the session. Returns False if it no longer applies.

        The caller commits.
        """
        listing = self.db.get(Listing, transition.listing_id)
        if listing is None:
            logger.info(f"Listing {transition.listing_id} already deleted; skipping {transition.action}")
            return False
        if listing.status != transition.from_status:
            logger.info(
                f"Listing {listing.id} is now '{listing.status}' (expected '{transition.from_status}'); "
                f"skipping {transition.action}"
            )
            return False

        if transition.action == ARCHIVE:
            self._archive(listing, transition.reason or REASON_MANUAL_ARCHIVE, transition.evaluated_at)
            logger.info(
                f"Archived listing {listing.id}: reason={transition.reason} "
                f"createdAt={isoformat(listing.original_created_at)} "
                f"expiresAt={isoformat(transition.expires_at)} "
                f"archivedAt={isoformat(listing.archived_at)} deleteAt={isoformat(listing.delete_at)} "
                f"tier={transition.account_tier}"
            )
        elif transition.action == DELETE:
            self._delete(listing)
            logger.info(
                f"Deleted listing {transition.listing_id}: reason={transition.reason} "
                f"deleteAt={isoformat(transition.delete_at)} now={isoformat(transition.evaluated_at)}"
            )
        else:
            raise ValueError(f"Unknown transition action '{transition.action}'")
        return True

    def _archive(self, listing: Listing, reason: str, now: datetime) -> None:
        listing.previous_status = listing.status
        listing.status = LISTING_ARCHIVED
        listing.archived_at = now
        listing.original_created_at = listing.original_created_at or listing.created_at
        listing.expiration_reason = reason
        listing.delete_at = now + ARCHIVE_RETENTION
        listing.updated_at = now
        close_open_offers(self.db, listing.id, now)

    def _delete(self, listing: Listing) -> None:
        close_open_offers(self.db, listing.id)
        self.db.query(ShortIdMapping).filter(ShortIdMapping.listing_id == listing.id).delete(
            synchronize_session=False
        )
        self.db.query(Favorite).filter(Favorite.listing_id == listing.id).delete(synchronize_session=False)
        self.db.delete(listing)

    def refresh(self, listing: Listing, now: Optional[datetime] = None) -> Optional[Transition]:
        """Apply any due transition to a listing being read. Caller commits."""
        now = now or utcnow()
        transition = self.evaluate_transition(listing, now)
        if transition is not None and transition.action == ARCHIVE:
            self.apply(transition)
            return transition
        return None

    # ------------------------------------------------------------------
    # Owner / moderator actions
    # ------------------------------------------------------------------

    def archive(self, listing: Listing, reason: str = REASON_MANUAL_ARCHIVE, now: Optional[datetime] = None) -> Transition:
        if listing.status == LISTING_ARCHIVED:
            raise ValidationError("Listing is already archived")
        if listing.status == LISTING_SOLD:
            raise ValidationError("Sold listings cannot be archived")
        transition = Transition(
            listing_id=listing.id,
            action=ARCHIVE,
            from_status=listing.status,
            evaluated_at=now or utcnow(),
            reason=reason,
        )
        self.apply(transition)
        return transition

    def restore(self, listing: Listing, now: Optional[datetime] = None) -> None:
        """Bring an archived listing back to its previous (live) status."""
        if listing.status != LISTING_ARCHIVED:
            raise ValidationError("Only archived listings can be restored")
        now = now or utcnow()
        previous = listing.previous_status
        listing.status = previous if previous in (LISTING_ACTIVE, LISTING_INACTIVE) else LISTING_ACTIVE
        listing.archived_at = None
        listing.expiration_reason = None
        listing.delete_at = None
        listing.previous_status = None
        if listing.expires_at is None or listing.expires_at <= now:
            listing.expires_at = now + listing_duration(self.account_tier_for(listing, now))
        listing.updated_at = now
        logger.info(f"Restored listing {listing.id} to '{listing.status}' until {isoformat(listing.expires_at)}")

    def delete(self, listing: Listing) -> None:
        self._delete(listing)
        logger.info(f"Deleted listing {listing.id} on request")

    def restore_incorrectly_archived(self, user: User, now: Optional[datetime] = None) -> dict:
        """Un-archive a premium user's listings that only expired under the free duration."""
        now = now or utcnow()
        if determine_account_tier(user, now) != PREMIUM_TIER:
            return {"status": "skipped", "restoredCount": 0, "totalFound": 0}

        archived = (
            self.db.query(Listing)
            .filter(Listing.user_id == user.id)
            .filter(Listing.status == LISTING_ARCHIVED)
            .filter(Listing.expiration_reason == REASON_TIER_DURATION)
            .all()
        )
        premium_duration = listing_duration(PREMIUM_TIER)
        restored = 0
        for listing in archived:
            created_at = listing.original_created_at or listing.created_at
            should_expire_at = created_at + premium_duration
            if now < should_expire_at:
                listing.expires_at = should_expire_at
                self.restore(listing, now)
                restored += 1

        self.db.commit()
        logger.info(f"Restored {restored}/{len(archived)} archived listings for premium user {user.id}")
        return {"status": "restored", "restoredCount": restored, "totalFound": len(archived)}

    # ------------------------------------------------------------------
    # Batch entry points
    # ------------------------------------------------------------------

    def _due_filter(self, now: datetime):
        return or_(
            and_(
                Listing.status == LISTING_ACTIVE,
                or_(Listing.expires_at.is_(None), Listing.expires_at < now),
            ),
            and_(
                Listing.status == LISTING_INACTIVE,
                func.coalesce(Listing.updated_at, Listing.created_at) <= now - INACTIVE_TIMEOUT,
            ),
            Listing.status == LISTING_EXPIRED,
            and_(Listing.status == LISTING_ARCHIVED, self._overdue_archived_filter(now)),
        )

    @staticmethod
    def _overdue_archived_filter(now: datetime):
        return or_(
            Listing.delete_at < now,
            and_(Listing.delete_at.is_(None), Listing.archived_at < now - ARCHIVE_RETENTION),
        )

    def _process_chunk(self, listing_ids: list[int], now: datetime, errors: list) -> tuple[list, list]:
        """Evaluate/apply each listing in its own savepoint, then commit the chunk."""
        archived: list[int] = []
        deleted: list[int] = []
        for listing_id in listing_ids:
            applied = None
            try:
                with self.db.begin_nested():
                    listing = self.db.get(Listing, listing_id)
                    if listing is None:
                        continue
                    transition = self.evaluate_transition(listing, now)
                    if transition is not None and self.apply(transition):
                        applied = transition.action
            except Exception as e:
                logger.error(f"Lifecycle sweep failed for listing {listing_id}: {e}")
                errors.append({"listingId": listing_id, "error": str(e)})
                continue

            if applied == ARCHIVE:
                archived.append(listing_id)
            elif applied == DELETE:
                deleted.append(listing_id)

        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Lifecycle sweep chunk commit failed ({len(listing_ids)} listings): {e}")
            errors.append({"listingIds": listing_ids, "error": str(e)})
            return [], []
        return archived, deleted

    def sweep(
        self,
        now: Optional[datetime] = None,
        listing_id: Optional[int] = None,
        chunk_size: int = CLEANUP_CHUNK_SIZE,
    ) -> dict:
        """Archive expired listings and delete archived listings past their TTL.

        Best effort: failures are logged and reported, never raised (except
        a missing ``listing_id``).
        """
        now = now or utcnow()

        if listing_id is not None:
            if self.db.get(Listing, listing_id) is None:
                raise NotFoundError("Listing not found")
            listing_ids = [listing_id]
        else:
            listing_ids = [
                row[0]
                for row in self.db.query(Listing.id).filter(self._due_filter(now)).order_by(Listing.id).all()
            ]

        logger.info(f"Lifecycle sweep starting at {isoformat(now)}: {len(listing_ids)} candidate listings")

        archived: list[int] = []
        deleted: list[int] = []
        errors: list[dict] = []
        for start in range(0, len(listing_ids), chunk_size):
            chunk_archived, chunk_deleted = self._process_chunk(listing_ids[start:start + chunk_size], now, errors)
            archived.extend(chunk_archived)
            deleted.extend(chunk_deleted)

        result = {
            "checked": len(listing_ids),
            "archived": len(archived),
            "deleted": len(deleted),
            "errors": len(errors),
            "archivedIds": archived[:50],
            "deletedIds": deleted[:50],
            "errorDetails": errors[:20],
            "timestamp": isoformat(now),
        }
        logger.info(
            f"Lifecycle sweep complete: {result['archived']} archived, {result['deleted']} deleted, "
            f"{result['errors']} errors"
        )
        return result

    def backup_cleanup(
        self,
        now: Optional[datetime] = None,
        emergency_only: bool = False,
        reason: str = "manual_trigger",
        max_deletions: int = DEFAULT_MAX_DELETIONS,
    ) -> dict:
        """Operator-triggered deletion of archived listings the scheduled sweep missed.

        The most overdue listings go first; ``max_deletions`` bounds the run.
        """
        started = time.monotonic()
        now = now or utcnow()
        logger.info(
            f"Backup cleanup triggered: reason={reason} emergencyOnly={emergency_only} maxDeletions={max_deletions}"
        )

        overdue = (
            self.db.query(Listing)
            .filter(Listing.status == LISTING_ARCHIVED)
            .filter(self._overdue_archived_filter(now))
            # Rows archived before delete_at existed fall back to archived_at
            .order_by(Listing.delete_at.asc().nulls_first(), Listing.archived_at.asc())
            .limit(BACKUP_SCAN_LIMIT)
            .all()
        )

        emergency_count = 0
        skipped = 0
        candidates = []
        for listing in overdue:
            minutes_overdue = _minutes_between(deletion_time(listing), now)
            is_emergency = minutes_overdue > EMERGENCY_OVERDUE_MINUTES
            if is_emergency:
                emergency_count += 1
            if emergency_only and not is_emergency:
                skipped += 1
                continue
            candidates.append(
                {
                    "id": listing.id,
                    "minutesOverdue": minutes_overdue,
                    "isEmergency": is_emergency,
                    "reason": listing.expiration_reason or "unknown",
                }
            )

        candidates.sort(key=lambda c: c["minutesOverdue"], reverse=True)
        selected = candidates[:max(0, max_deletions)]
        skipped += len(candidates) - len(selected)

        errors: list[dict] = []
        deleted_ids: set[int] = set()
        for start in range(0, len(selected), BACKUP_CHUNK_SIZE):
            chunk = [c["id"] for c in selected[start:start + BACKUP_CHUNK_SIZE]]
            _, chunk_deleted = self._process_chunk(chunk, now, errors)
            deleted_ids.update(chunk_deleted)

        result = {
            "timestamp": isoformat(now),
            "triggerReason": reason,
            "emergencyMode": emergency_only,
            "metrics": {
                "totalFound": len(overdue),
                "emergencyCount": emergency_count,
                "deletedCount": len(deleted_ids),
                "skippedCount": skipped,
                "executionTimeMs": int((time.monotonic() - started) * 1000),
            },
            "deletedListings": [c for c in selected if c["id"] in deleted_ids],
            "errors": [e["error"] for e in errors],
        }
        result["recommendations"] = backup_recommendations(result)
        result["message"] = f"Backup cleanup completed: deleted {len(deleted_ids)} listings"
        logger.info(
            f"Backup cleanup done: deleted={len(deleted_ids)} emergency={emergency_count} "
            f"skipped={skipped} errors={len(errors)}"
        )
        return result

    def health(self, now: Optional[datetime] = None) -> dict:
        """Overdue-listing report used to tell whether the scheduled sweep is running."""
        now = now or utcnow()

        overdue = (
            self.db.query(Listing)
            .filter(Listing.status == LISTING_ARCHIVED)
            .filter(self._overdue_archived_filter(now))
            .all()
        )
        unarchived = (
            self.db.query(Listing)
            .filter(Listing.status == LISTING_ACTIVE)
            .filter(Listing.expires_at < now)
            .count()
        )

        details = []
        critical = warning = 0
        oldest: Optional[int] = None
        for listing in overdue:
            minutes_overdue = _minutes_between(deletion_time(listing), now)
            if minutes_overdue > EMERGENCY_OVERDUE_MINUTES:
                critical += 1
            elif minutes_overdue > WARNING_OVERDUE_MINUTES:
                warning += 1
            oldest = minutes_overdue if oldest is None else max(oldest, minutes_overdue)
            details.append(
                {
                    "id": listing.id,
                    "deleteAt": isoformat(deletion_time(listing)),
                    "minutesOverdue": minutes_overdue,
                    "reason": listing.expiration_reason or "unknown",
                }
            )
        details.sort(key=lambda d: d["minutesOverdue"], reverse=True)

        status = "healthy"
        issues: list[str] = []
        recommendations: list[str] = []
        if critical:
            status = "critical"
            issues.append(f"{critical} listings are critically overdue (3+ hours)")
            recommendations.append("Run backup cleanup immediately")
            recommendations.append("Check the Celery beat and worker logs for sweep failures")
        elif warning:
            status = "warning"
            issues.append(f"{warning} listings are overdue (1+ hours)")
            recommendations.append("Monitor for the next scheduled sweep")
        if oldest is not None and oldest > SWEEP_STALE_MINUTES:
            issues.append("Scheduled sweep may not be executing - listings significantly overdue")
            recommendations.append("Verify the Celery beat schedule is enabled")

        last_run = (
            self.db.query(JobRun)
            .filter(JobRun.job_name == SWEEP_JOB_NAME)
            .order_by(JobRun.ran_at.desc())
            .first()
        )

        return {
            "timestamp": isoformat(now),
            "status": status,
            "issues": issues,
            "recommendations": recommendations,
            "metrics": {
                "totalOverdueListings": len(overdue),
                "oldestOverdueMinutes": oldest,
                "criticallyOverdueCount": critical,
                "warningOverdueCount": warning,
                "expiredButActiveCount": unarchived,
                "expectedSweepIntervalMinutes": SWEEP_INTERVAL_HOURS * 60,
            },
            "overdueListings": details[:5],
            "schedule": {
                "description": f"{SWEEP_MINUTE} */{SWEEP_INTERVAL_HOURS} * * * (every {SWEEP_INTERVAL_HOURS} hours at :{SWEEP_MINUTE} UTC)",
                "lastExpectedRun": isoformat(last_sweep_time(now)),
                "nextExpectedRun": isoformat(next_sweep_time(now)),
            },
            "lastRecordedRun": last_run.to_dict() if last_run else None,
        }


def backup_recommendations(result: dict) -> list[str]:
    metrics = result["metrics"]
    recommendations = []
    if metrics["emergencyCount"] > 0:
        recommendations.append("Emergency listings found - investigate scheduled sweep failure")
        recommendations.append("Check the Celery beat and worker logs")
    if metrics["skippedCount"] > 0:
        recommendations.append(f"{metrics['skippedCount']} listings were skipped - consider running a full cleanup")
    if result["errors"]:
        recommendations.append("Some cleanup operations failed - check error logs")
    if metrics["deletedCount"] > 10:
        recommendations.append("Large number of deletions suggests the scheduled sweep is not keeping up")
    return recommendations
