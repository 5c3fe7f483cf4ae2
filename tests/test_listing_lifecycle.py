import unittest
from datetime import datetime, timedelta
from unittest import mock

from cardmarket.constants import (
    LISTING_ACTIVE,
    LISTING_ARCHIVED,
    LISTING_EXPIRED,
    LISTING_INACTIVE,
    OFFER_EXPIRED,
    REASON_INACTIVE_TIMEOUT,
    REASON_MANUAL_ARCHIVE,
    REASON_TIER_DURATION,
)
from cardmarket.errors import NotFoundError, ValidationError
from cardmarket.models import Favorite, JobRun, Listing, OutboxMessage, ShortIdMapping
from cardmarket.timestamps import utcnow
from cardmarket.services.listing_lifecycle import (
    ARCHIVE,
    DELETE,
    ListingLifecycle,
    calculate_expiration,
    last_sweep_time,
    next_sweep_time,
)
from cardmarket.services.offers import OfferService
from tests.helpers import T0, DatabaseTestCase


class CalculateExpirationTestCase(unittest.TestCase):
    def test_free_and_premium_durations(self):
        self.assertEqual(calculate_expiration(T0, "free"), T0 + timedelta(hours=48))
        self.assertEqual(calculate_expiration(T0, "premium"), T0 + timedelta(hours=720))

    def test_unknown_tier_is_free(self):
        self.assertEqual(calculate_expiration(T0, "gold"), T0 + timedelta(hours=48))
        self.assertEqual(calculate_expiration(T0, None), T0 + timedelta(hours=48))

    def test_accepts_other_timestamp_shapes(self):
        millis = int((T0 - datetime(1970, 1, 1)).total_seconds() * 1000)
        expected = T0 + timedelta(hours=48)
        self.assertEqual(calculate_expiration(millis, "free"), expected)
        self.assertEqual(calculate_expiration("2026-03-01T12:00:00Z", "free"), expected)
        self.assertEqual(calculate_expiration({"_seconds": millis // 1000, "_nanoseconds": 0}, "free"), expected)

    def test_unparseable_created_at_falls_back_to_now(self):
        with self.assertLogs("cardmarket.timestamps", level="WARNING"):
            expires = calculate_expiration("not a date", "free")
        self.assertAlmostEqual(
            (expires - utcnow()).total_seconds(),
            timedelta(hours=48).total_seconds(),
            delta=60,
        )


class SweepScheduleTestCase(unittest.TestCase):
    def test_last_and_next_sweep(self):
        now = datetime(2026, 1, 1, 13, 20)
        self.assertEqual(last_sweep_time(now), datetime(2026, 1, 1, 12, 15))
        self.assertEqual(next_sweep_time(now), datetime(2026, 1, 1, 14, 15))

    def test_before_slot_minute_uses_previous_slot(self):
        now = datetime(2026, 1, 1, 12, 10)
        self.assertEqual(last_sweep_time(now), datetime(2026, 1, 1, 10, 15))
        self.assertEqual(next_sweep_time(now), datetime(2026, 1, 1, 12, 15))

    def test_just_after_midnight_rolls_back_a_day(self):
        self.assertEqual(last_sweep_time(datetime(2026, 1, 2, 0, 5)), datetime(2026, 1, 1, 22, 15))


class ListingLifecycleTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("seller-1")
        self.lifecycle = ListingLifecycle(self.db)

    def test_free_listing_scenario_around_48_hours(self):
        listing = self.make_listing(self.seller)
        self.assertEqual(listing.expires_at, T0 + timedelta(hours=48))

        result = self.lifecycle.sweep(now=T0 + timedelta(hours=47, minutes=59))
        self.assertEqual(result["archived"], 0)
        self.db.refresh(listing)
        self.assertEqual(listing.status, LISTING_ACTIVE)

        swept_at = T0 + timedelta(hours=48, minutes=1)
        result = self.lifecycle.sweep(now=swept_at)
        self.assertEqual(result["archived"], 1)
        self.db.refresh(listing)
        self.assertEqual(listing.status, LISTING_ARCHIVED)
        self.assertEqual(listing.archived_at, swept_at)
        self.assertEqual(listing.expiration_reason, REASON_TIER_DURATION)
        self.assertEqual(listing.previous_status, LISTING_ACTIVE)
        self.assertEqual(listing.original_created_at, T0)
        self.assertEqual(listing.delete_at, swept_at + timedelta(days=7))

    def test_listing_without_stored_expiry_uses_owner_tier(self):
        premium = self.make_user("premium-1", tier="premium")
        listing = self.make_listing(premium, expires_at=None)

        self.assertIsNone(self.lifecycle.evaluate_transition(listing, T0 + timedelta(hours=49)))
        transition = self.lifecycle.evaluate_transition(listing, T0 + timedelta(hours=721))
        self.assertEqual(transition.action, ARCHIVE)
        self.assertEqual(transition.account_tier, "premium")

    def test_remaining_seconds_hits_zero_at_expiry_and_never_negative(self):
        listing = self.make_listing(self.seller)
        self.assertEqual(self.lifecycle.remaining_seconds(listing, T0), 48 * 3600)
        self.assertEqual(self.lifecycle.remaining_seconds(listing, T0 + timedelta(hours=48)), 0)
        self.assertEqual(self.lifecycle.remaining_seconds(listing, T0 + timedelta(hours=50)), 0)

    def test_archived_listing_deleted_only_after_delete_at(self):
        listing = self.make_listing(self.seller)
        archived_at = T0 + timedelta(hours=49)
        self.lifecycle.sweep(now=archived_at)
        self.db.refresh(listing)
        delete_at = listing.delete_at
        self.assertEqual(delete_at, archived_at + timedelta(days=7))
        listing_id = listing.id
        self.db.add(Favorite(user_id="fan-1", listing_id=listing_id))
        self.db.commit()

        result = self.lifecycle.sweep(now=delete_at)
        self.assertEqual(result["deleted"], 0)
        self.assertIsNotNone(self.db.get(Listing, listing_id))

        result = self.lifecycle.sweep(now=delete_at + timedelta(seconds=1))
        self.assertEqual(result["deleted"], 1)
        self.db.expire_all()
        self.assertIsNone(self.db.get(Listing, listing_id))
        self.assertEqual(self.db.query(ShortIdMapping).filter_by(listing_id=listing_id).count(), 0)
        self.assertEqual(self.db.query(Favorite).filter_by(listing_id=listing_id).count(), 0)

    def test_archived_listing_without_delete_at_uses_archived_at(self):
        listing = self.make_listing(
            self.seller,
            status=LISTING_ARCHIVED,
            archived_at=T0,
            expiration_reason=REASON_TIER_DURATION,
        )
        self.assertIsNone(self.lifecycle.evaluate_transition(listing, T0 + timedelta(days=7)))
        transition = self.lifecycle.evaluate_transition(listing, T0 + timedelta(days=7, seconds=1))
        self.assertEqual(transition.action, DELETE)

    def test_sweep_twice_is_idempotent(self):
        for _ in range(3):
            self.make_listing(self.seller)
        now = T0 + timedelta(hours=50)

        first = self.lifecycle.sweep(now=now)
        second = self.lifecycle.sweep(now=now)

        self.assertEqual(first["archived"], 3)
        self.assertEqual(second["archived"], 0)
        self.assertEqual(second["deleted"], 0)
        self.assertEqual(self.db.query(Listing).filter_by(status=LISTING_ARCHIVED).count(), 3)

    def test_apply_skips_stale_transition(self):
        listing = self.make_listing(self.seller)
        now = T0 + timedelta(hours=50)
        transition = self.lifecycle.evaluate_transition(listing, now)

        self.assertTrue(self.lifecycle.apply(transition))
        self.db.commit()
        self.assertFalse(self.lifecycle.apply(transition))

    def test_inactive_listing_archived_after_seven_days_unchanged(self):
        listing = self.make_listing(self.seller, status=LISTING_INACTIVE)

        self.lifecycle.sweep(now=T0 + timedelta(days=6, hours=23))
        self.db.refresh(listing)
        self.assertEqual(listing.status, LISTING_INACTIVE)

        self.lifecycle.sweep(now=T0 + timedelta(days=7))
        self.db.refresh(listing)
        self.assertEqual(listing.status, LISTING_ARCHIVED)
        self.assertEqual(listing.expiration_reason, REASON_INACTIVE_TIMEOUT)
        self.assertEqual(listing.previous_status, LISTING_INACTIVE)

    def test_expired_listing_always_archived(self):
        listing = self.make_listing(self.seller, status=LISTING_EXPIRED)
        self.lifecycle.sweep(now=T0 + timedelta(minutes=1))
        self.db.refresh(listing)
        self.assertEqual(listing.status, LISTING_ARCHIVED)
        self.assertEqual(listing.expiration_reason, REASON_TIER_DURATION)

    def test_single_listing_sweep(self):
        target = self.make_listing(self.seller)
        other = self.make_listing(self.seller)

        result = self.lifecycle.sweep(now=T0 + timedelta(hours=50), listing_id=target.id)

        self.assertEqual(result["archived"], 1)
        self.db.refresh(other)
        self.assertEqual(other.status, LISTING_ACTIVE)

    def test_single_listing_sweep_missing_listing(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.sweep(now=T0, listing_id=999)

    def test_failure_on_one_listing_does_not_stop_sweep(self):
        bad = self.make_listing(self.seller)
        good = self.make_listing(self.seller)
        original = ListingLifecycle.evaluate_transition

        def flaky(lifecycle, listing, now):
            if listing.id == bad.id:
                raise RuntimeError("corrupt row")
            return original(lifecycle, listing, now)

        with mock.patch.object(ListingLifecycle, "evaluate_transition", autospec=True, side_effect=flaky):
            with self.assertLogs("cardmarket.services.listing_lifecycle", level="ERROR"):
                result = self.lifecycle.sweep(now=T0 + timedelta(hours=50))

        self.assertEqual(result["archived"], 1)
        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["errorDetails"][0]["listingId"], bad.id)
        self.db.refresh(good)
        self.assertEqual(good.status, LISTING_ARCHIVED)

    def test_chunk_commit_failure_is_reported_and_sweep_continues(self):
        first = self.make_listing(self.seller)
        second = self.make_listing(self.seller)
        real_commit = self.db.commit
        commits = []

        def failing_first_commit():
            commits.append(1)
            if len(commits) == 1:
                raise RuntimeError("database is locked")
            real_commit()

        with mock.patch.object(self.db, "commit", side_effect=failing_first_commit):
            with self.assertLogs("cardmarket.services.listing_lifecycle", level="ERROR") as logs:
                result = self.lifecycle.sweep(now=T0 + timedelta(hours=50), chunk_size=1)

        self.assertIn("chunk commit failed", logs.output[0])
        self.assertEqual(result["checked"], 2)
        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["errorDetails"], [{"listingIds": [first.id], "error": "database is locked"}])
        self.assertEqual(result["archived"], 1)
        self.assertEqual(result["archivedIds"], [second.id])
        self.db.refresh(first)
        self.db.refresh(second)
        self.assertEqual(first.status, LISTING_ACTIVE)
        self.assertEqual(second.status, LISTING_ARCHIVED)

    def test_inactive_listing_without_update_stamp_uses_created_at(self):
        listing = self.make_listing(self.seller, status=LISTING_INACTIVE, updated_at=None)
        self.assertIsNone(listing.updated_at)

        result = self.lifecycle.sweep(now=T0 + timedelta(days=8))

        self.assertEqual(result["archivedIds"], [listing.id])
        self.db.refresh(listing)
        self.assertEqual(listing.expiration_reason, REASON_INACTIVE_TIMEOUT)

    def test_archiving_expires_open_offers(self):
        buyer = self.make_user("buyer-1")
        listing = self.make_listing(self.seller)
        offer = OfferService(self.db).create_offer(buyer, listing.id, self.seller.id, 40, now=T0 + timedelta(hours=1))

        self.lifecycle.sweep(now=T0 + timedelta(hours=50))

        self.db.refresh(offer)
        self.assertEqual(offer.status, OFFER_EXPIRED)
        self.assertEqual(self.db.query(OutboxMessage).filter_by(recipient_id="buyer-1", kind="notification").count(), 1)

    def test_manual_archive_and_restore(self):
        listing = self.make_listing(self.seller)
        self.lifecycle.archive(listing, now=T0 + timedelta(hours=1))
        self.db.commit()
        self.assertEqual(listing.expiration_reason, REASON_MANUAL_ARCHIVE)

        with self.assertRaises(ValidationError):
            self.lifecycle.archive(listing)

        self.lifecycle.restore(listing, now=T0 + timedelta(hours=2))
        self.db.commit()
        self.assertEqual(listing.status, LISTING_ACTIVE)
        self.assertIsNone(listing.delete_at)
        self.assertEqual(listing.expires_at, T0 + timedelta(hours=48))

    def test_restore_incorrectly_archived_for_premium_user(self):
        user = self.make_user("upgraded-1")
        recent = self.make_listing(user)
        old = self.make_listing(user, created_at=T0 - timedelta(days=40))
        now = T0 + timedelta(hours=50)
        self.lifecycle.sweep(now=now)

        user.account_tier = "premium"
        self.db.commit()
        result = self.lifecycle.restore_incorrectly_archived(user, now=now + timedelta(hours=1))

        self.assertEqual(result["restoredCount"], 1)
        self.assertEqual(result["totalFound"], 2)
        self.db.refresh(recent)
        self.db.refresh(old)
        self.assertEqual(recent.status, LISTING_ACTIVE)
        self.assertEqual(recent.expires_at, T0 + timedelta(hours=720))
        self.assertEqual(old.status, LISTING_ARCHIVED)

    def test_restore_skipped_for_free_user(self):
        result = self.lifecycle.restore_incorrectly_archived(self.seller, now=T0)
        self.assertEqual(result["status"], "skipped")


class BackupCleanupTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("seller-1")
        self.lifecycle = ListingLifecycle(self.db)
        self.now = T0 + timedelta(days=30)

    def _archived(self, minutes_overdue: int) -> Listing:
        delete_at = self.now - timedelta(minutes=minutes_overdue)
        return self.make_listing(
            self.seller,
            status=LISTING_ARCHIVED,
            archived_at=delete_at - timedelta(days=7),
            delete_at=delete_at,
            expiration_reason=REASON_TIER_DURATION,
        )

    def test_emergency_only_skips_recent_overdue(self):
        emergency = self._archived(240)
        recent = self._archived(30)

        result = self.lifecycle.backup_cleanup(now=self.now, emergency_only=True, reason="test")

        self.assertEqual(result["metrics"]["deletedCount"], 1)
        self.assertEqual(result["metrics"]["emergencyCount"], 1)
        self.assertEqual(result["metrics"]["skippedCount"], 1)
        self.assertEqual(result["deletedListings"][0]["id"], emergency.id)
        self.assertTrue(result["deletedListings"][0]["isEmergency"])
        self.db.expire_all()
        self.assertIsNotNone(self.db.get(Listing, recent.id))
        self.assertIn("Emergency listings found - investigate scheduled sweep failure", result["recommendations"])
        self.assertIn("1 listings were skipped - consider running a full cleanup", result["recommendations"])

    def test_max_deletions_caps_run_and_prefers_most_overdue(self):
        listings = [self._archived(minutes) for minutes in (10, 500, 90)]

        result = self.lifecycle.backup_cleanup(now=self.now, max_deletions=2)

        deleted_ids = {entry["id"] for entry in result["deletedListings"]}
        self.assertEqual(deleted_ids, {listings[1].id, listings[2].id})
        self.assertEqual(result["metrics"]["skippedCount"], 1)

    def test_scan_window_follows_deletion_time(self):
        # Archived longest ago but given a later deletion time
        late = self.make_listing(
            self.seller,
            status=LISTING_ARCHIVED,
            archived_at=self.now - timedelta(days=40),
            delete_at=self.now - timedelta(minutes=10),
        )
        overdue = [self._archived(minutes) for minutes in (3 * 24 * 60, 2 * 24 * 60)]

        with mock.patch("cardmarket.services.listing_lifecycle.BACKUP_SCAN_LIMIT", 2):
            result = self.lifecycle.backup_cleanup(now=self.now)

        self.assertEqual(result["metrics"]["totalFound"], 2)
        self.assertEqual({entry["id"] for entry in result["deletedListings"]}, {listing.id for listing in overdue})
        self.db.expire_all()
        self.assertIsNotNone(self.db.get(Listing, late.id))

    def test_not_yet_due_listings_untouched(self):
        self._archived(-60)
        result = self.lifecycle.backup_cleanup(now=self.now)
        self.assertEqual(result["metrics"]["totalFound"], 0)
        self.assertEqual(result["recommendations"], [])

    def test_health_buckets_and_schedule(self):
        self._archived(30)
        self._archived(90)
        self._archived(200)
        self.db.add(JobRun(job_name="listing_sweep", ran_at=self.now - timedelta(hours=1), ok=True))
        self.db.commit()

        report = self.lifecycle.health(now=self.now)

        self.assertEqual(report["status"], "critical")
        self.assertEqual(report["metrics"]["totalOverdueListings"], 3)
        self.assertEqual(report["metrics"]["criticallyOverdueCount"], 1)
        self.assertEqual(report["metrics"]["warningOverdueCount"], 1)
        self.assertEqual(report["metrics"]["oldestOverdueMinutes"], 200)
        self.assertEqual(report["overdueListings"][0]["minutesOverdue"], 200)
        self.assertEqual(report["lastRecordedRun"]["jobName"], "listing_sweep")
        self.assertEqual(report["schedule"]["lastExpectedRun"], "2026-03-31T10:15:00Z")
        self.assertEqual(report["schedule"]["nextExpectedRun"], "2026-03-31T12:15:00Z")

    def test_health_is_healthy_with_nothing_overdue(self):
        report = self.lifecycle.health(now=self.now)
        self.assertEqual(report["status"], "healthy")
        self.assertEqual(report["issues"], [])
        self.assertIsNone(report["lastRecordedRun"])


if __name__ == "__main__":
    unittest.main()
