import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest import mock

from cardmarket.constants import (
    LISTING_ACTIVE,
    LISTING_SOLD,
    OFFER_ACCEPTED,
    OFFER_EXPIRED,
    PENDING_SHIPPING_ADDRESS,
    PICKUP_ADDRESS,
)
from cardmarket.errors import AuthorizationError, ValidationError
from cardmarket.models import Order, OutboxMessage, UserOrderIndex
from cardmarket.services import orders as order_service
from cardmarket.services.offers import OfferService
from cardmarket.services.listing_lifecycle import ListingLifecycle
from cardmarket.services.orders import (
    complete_by_buyer,
    confirm_pickup,
    create_order_from_offer,
    generate_order_id,
    rebuild_order_index,
    submit_shipping_address,
)
from tests.helpers import T0, DatabaseTestCase


class GenerateOrderIdTestCase(unittest.TestCase):
    def test_format(self):
        order_id = generate_order_id(datetime(2026, 1, 1))
        prefix, millis, suffix = order_id.split("_")
        self.assertEqual(prefix, "pi")
        self.assertEqual(millis, "1767225600000")
        self.assertEqual(len(suffix), 12)


class OrderMaterializationTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("seller-1", stripe_connect_account_id="acct_123")
        self.buyer = self.make_user("buyer-1")
        self.listing = self.make_listing(self.seller, price="50.00")
        self.offers = OfferService(self.db)
        self.now = T0 + timedelta(hours=2)

    def _accepted_offer(self, amount=45, **kwargs):
        offer = self.offers.create_offer(
            self.buyer, self.listing.id, self.seller.id, amount, now=self.now, **kwargs
        )
        self.offers.respond(offer.id, self.seller, "accept", now=self.now)
        self.assertEqual(offer.status, OFFER_ACCEPTED)
        return offer

    def test_pickup_order_scenario(self):
        offer = self._accepted_offer(45, is_pickup=True)

        order = create_order_from_offer(self.db, offer.id, self.seller, mark_as_sold=True, now=self.now)

        self.assertEqual(order.amount, Decimal("45.00"))
        self.assertEqual(order.shipping_address, PICKUP_ADDRESS)
        self.assertFalse(order.payment_required)
        self.assertEqual(order.status, "pending")
        self.assertTrue(order.seller_has_stripe_account)
        self.assertEqual(self.db.query(Order).count(), 1)

        index_rows = self.db.query(UserOrderIndex).filter_by(order_id=order.id).all()
        self.assertEqual(
            sorted((row.user_id, row.role) for row in index_rows),
            [("buyer-1", "buyer"), ("seller-1", "seller")],
        )
        self.db.refresh(offer)
        self.assertTrue(offer.cleared)
        self.db.refresh(self.listing)
        self.assertEqual(self.listing.status, LISTING_SOLD)
        self.assertEqual(self.listing.sold_to, "buyer-1")

    def test_shipping_placeholder_when_no_address(self):
        offer = self._accepted_offer(45)
        order = create_order_from_offer(self.db, offer.id, self.seller, mark_as_sold=False, now=self.now)
        self.assertEqual(order.shipping_address, PENDING_SHIPPING_ADDRESS)
        self.assertTrue(order.payment_required)
        self.assertEqual(order.status, "awaiting_payment")
        self.db.refresh(self.listing)
        self.assertEqual(self.listing.status, "active")

    def test_listing_stays_listed_by_default(self):
        offer = self._accepted_offer(45)
        create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        self.db.refresh(self.listing)
        self.assertEqual(self.listing.status, LISTING_ACTIVE)
        self.assertIsNone(self.listing.sold_to)

    def test_marking_sold_closes_other_open_offers(self):
        rival = self.offers.create_offer(self.make_user("buyer-2"), self.listing.id, self.seller.id, 40, now=self.now)
        offer = self._accepted_offer(45)

        create_order_from_offer(self.db, offer.id, self.seller, mark_as_sold=True, now=self.now)

        self.db.refresh(rival)
        self.assertEqual(rival.status, OFFER_EXPIRED)
        with self.assertRaises(ValidationError):
            self.offers.respond(rival.id, self.seller, "accept", now=self.now)
        expired_notice = self.db.query(OutboxMessage).filter_by(recipient_id="buyer-2", subject="Offer Expired").count()
        self.assertEqual(expired_notice, 2)

    def test_no_order_once_listing_left_the_market(self):
        offer = self._accepted_offer(45)
        ListingLifecycle(self.db).archive(self.listing, now=self.now)
        self.db.commit()

        with self.assertRaisesRegex(ValidationError, "no longer available"):
            create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        self.assertEqual(self.db.query(Order).count(), 0)

    def test_offer_shipping_address_is_copied(self):
        address = {"name": "Ash", "line1": "1 Route", "city": "Pallet", "state": "KA", "postalCode": "1", "country": "JP"}
        offer = self._accepted_offer(45, shipping_address=address)
        order = create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        self.assertEqual(order.shipping_address, address)

    def test_second_materialization_rejected(self):
        offer = self._accepted_offer()
        create_order_from_offer(self.db, offer.id, self.seller, now=self.now)

        with self.assertRaises(ValidationError):
            create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        self.assertEqual(self.db.query(Order).count(), 1)
        self.assertEqual(self.db.query(UserOrderIndex).count(), 2)

    def test_only_seller_may_create_order(self):
        offer = self._accepted_offer()
        with self.assertRaises(AuthorizationError):
            create_order_from_offer(self.db, offer.id, self.buyer, now=self.now)

    def test_offer_must_be_accepted(self):
        offer = self.offers.create_offer(self.buyer, self.listing.id, self.seller.id, 45, now=self.now)
        with self.assertRaises(ValidationError):
            create_order_from_offer(self.db, offer.id, self.seller, now=self.now)

    def test_confirmation_emails_queued_for_both_parties(self):
        offer = self._accepted_offer()
        create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        order_emails = (
            self.db.query(OutboxMessage)
            .filter(OutboxMessage.kind == "email")
            .filter(OutboxMessage.subject.in_(("Order Created", "New Sale")))
            .all()
        )
        self.assertEqual(sorted(m.recipient_id for m in order_emails), ["buyer-1", "seller-1"])

    def test_order_id_collision_is_retried(self):
        offer = self._accepted_offer()
        first = create_order_from_offer(self.db, offer.id, self.seller, now=self.now)

        other_buyer = self.make_user("buyer-2")
        second_listing = self.make_listing(self.seller)
        second_offer = self.offers.create_offer(other_buyer, second_listing.id, self.seller.id, 30, now=self.now)
        self.offers.respond(second_offer.id, self.seller, "accept", now=self.now)

        # A colliding row written by another process is not in this session
        first_id = first.id
        self.db.expunge(first)
        ids = iter([first_id, "pi_1_fresh"])
        with mock.patch.object(order_service, "generate_order_id", side_effect=lambda now=None: next(ids)):
            with self.assertLogs("cardmarket.services.orders", level="WARNING"):
                order = create_order_from_offer(self.db, second_offer.id, self.seller, now=self.now)

        self.assertEqual(order.id, "pi_1_fresh")

    def test_rebuild_order_index(self):
        offer = self._accepted_offer()
        order = create_order_from_offer(self.db, offer.id, self.seller, now=self.now)
        self.db.query(UserOrderIndex).filter_by(role="buyer").delete()
        self.db.add(UserOrderIndex(user_id="ghost", order_id=order.id, role="buyer"))
        self.db.commit()

        result = rebuild_order_index(self.db)

        self.assertEqual(result, {"added": 1, "removed": 1, "total": 2})
        self.assertEqual(sorted(r.user_id for r in self.db.query(UserOrderIndex).all()), ["buyer-1", "seller-1"])
        self.assertEqual([o.id for o in order_service.orders_for_user(self.db, "buyer-1")], [order.id])


class OrderFulfillmentTestCase(DatabaseTestCase):
    ADDRESS = {"name": "Ash", "line1": "1 Route", "city": "Pallet", "state": "KA", "postalCode": "1", "country": "JP"}

    def setUp(self):
        super().setUp()
        self.seller = self.make_user("seller-1")
        self.buyer = self.make_user("buyer-1")
        self.offers = OfferService(self.db)
        self.now = T0 + timedelta(hours=2)

    def _order(self, **offer_fields):
        listing = self.make_listing(self.seller, price="50.00")
        offer = self.offers.create_offer(self.buyer, listing.id, self.seller.id, 45, now=self.now, **offer_fields)
        self.offers.respond(offer.id, self.seller, "accept", now=self.now)
        return create_order_from_offer(self.db, offer.id, self.seller, mark_as_sold=True, now=self.now)

    def test_buyer_adds_shipping_address(self):
        order = self._order()

        submit_shipping_address(self.db, order.id, self.buyer, dict(self.ADDRESS, line2=" Apt 2 "), now=self.now)

        self.db.refresh(order)
        self.assertEqual(order.shipping_address, dict(self.ADDRESS, line2="Apt 2"))
        notice = self.db.query(OutboxMessage).filter_by(kind="email", subject="Shipping Address Added").one()
        self.assertEqual(notice.recipient_id, "seller-1")

    def test_shipping_address_requires_every_field(self):
        order = self._order()
        with self.assertRaisesRegex(ValidationError, "city, postalCode"):
            submit_shipping_address(self.db, order.id, self.buyer, dict(self.ADDRESS, city="  ", postalCode=None))
        self.db.refresh(order)
        self.assertEqual(order.shipping_address, PENDING_SHIPPING_ADDRESS)

    def test_only_buyer_sets_address_on_shipped_orders(self):
        order = self._order()
        with self.assertRaises(AuthorizationError):
            submit_shipping_address(self.db, order.id, self.seller, self.ADDRESS)
        with self.assertRaises(AuthorizationError):
            submit_shipping_address(self.db, order.id, self.make_user("stranger"), self.ADDRESS)

        pickup = self._order(is_pickup=True)
        with self.assertRaises(ValidationError):
            submit_shipping_address(self.db, pickup.id, self.buyer, self.ADDRESS)

    def test_pickup_completes_after_both_confirm(self):
        order = self._order(is_pickup=True)

        confirm_pickup(self.db, order.id, self.seller, now=self.now)
        self.assertEqual(order.status, "pending")
        self.assertTrue(order.seller_pickup_confirmed)
        with self.assertRaisesRegex(ValidationError, "Seller has already confirmed pickup"):
            confirm_pickup(self.db, order.id, self.seller, now=self.now)

        later = self.now + timedelta(hours=1)
        confirm_pickup(self.db, order.id, self.buyer, now=later)
        self.db.refresh(order)
        self.assertEqual(order.status, "completed")
        self.assertEqual(order.completed_at, later)
        self.assertEqual(order.completed_by, "buyer-1")

        with self.assertRaisesRegex(ValidationError, "already been completed"):
            confirm_pickup(self.db, order.id, self.seller, now=later)
        subjects = {m.subject for m in self.db.query(OutboxMessage).filter_by(kind="email", recipient_id="seller-1")}
        self.assertIn("Pickup Completed", subjects)

    def test_pickup_confirmation_rejected_for_shipped_orders(self):
        order = self._order()
        with self.assertRaisesRegex(ValidationError, "only valid for local pickup"):
            confirm_pickup(self.db, order.id, self.buyer)

    def test_buyer_completion_waits_a_day(self):
        order = self._order()
        submit_shipping_address(self.db, order.id, self.buyer, self.ADDRESS, now=self.now)

        with self.assertRaisesRegex(ValidationError, "in 5 hour"):
            complete_by_buyer(self.db, order.id, self.buyer, now=self.now + timedelta(hours=19, minutes=30))
        with self.assertRaises(AuthorizationError):
            complete_by_buyer(self.db, order.id, self.seller, now=self.now + timedelta(days=2))

        done_at = self.now + timedelta(days=1)
        complete_by_buyer(self.db, order.id, self.buyer, now=done_at)
        self.db.refresh(order)
        self.assertEqual(order.status, "completed")
        self.assertEqual(order.completed_at, done_at)
        notice = self.db.query(OutboxMessage).filter_by(kind="email", subject="Order Completed by Buyer").one()
        self.assertEqual(notice.recipient_id, "seller-1")

        with self.assertRaisesRegex(ValidationError, "already completed"):
            complete_by_buyer(self.db, order.id, self.buyer, now=done_at)

    def test_buyer_completion_needs_address_and_shipped_order(self):
        order = self._order()
        with self.assertRaisesRegex(ValidationError, "shipping address"):
            complete_by_buyer(self.db, order.id, self.buyer, now=self.now + timedelta(days=2))

        pickup = self._order(is_pickup=True)
        with self.assertRaisesRegex(ValidationError, "confirming the pickup"):
            complete_by_buyer(self.db, pickup.id, self.buyer, now=self.now + timedelta(days=2))


if __name__ == "__main__":
    unittest.main()
