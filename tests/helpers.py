import unittest
from datetime import datetime, timedelta
from decimal import Decimal

import jwt

from cardmarket.config import Settings
from cardmarket.constants import LISTING_ACTIVE
from cardmarket.database import Database
from cardmarket.models import Listing, ShortIdMapping, User

JWT_SECRET = "test-jwt-secret"
ADMIN_SECRET = "test-admin-secret"
CRON_SECRET = "test-cron-secret"

T0 = datetime(2026, 3, 1, 12, 0, 0)


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "environment": "test",
        "admin_secret": ADMIN_SECRET,
        "cron_secret": CRON_SECRET,
        "jwt_secret": JWT_SECRET,
        "email_api_url": "https://email.test/send",
        "email_api_key": "key",
        "rate_limit_enabled": True,
        "scheduler_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def make_token(user_id: str, **claims) -> str:
    return jwt.encode({"sub": user_id, **claims}, JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **claims)}"}


class FakeEmailClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    @property
    def configured(self) -> bool:
        return True

    async def send_email(self, to, subject, text, html=None):
        if self.fail:
            raise RuntimeError("provider unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text})
        return f"msg-{len(self.sent)}"


class FakePushClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_push(self, user_id, title, body, data=None):
        if self.fail:
            raise RuntimeError("push provider unavailable")
        self.sent.append({"userId": user_id, "title": title})


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory database per test."""

    def setUp(self):
        self.database = Database("sqlite://")
        self.database.create_all()
        self.db = self.database.session()
        self._short_ids = 0

    def tearDown(self):
        self.db.close()
        self.database.dispose()

    def make_user(self, user_id: str, tier: str = "free", **fields) -> User:
        user = User(
            id=user_id,
            username=fields.pop("username", user_id),
            email=fields.pop("email", f"{user_id}@example.com"),
            account_tier=tier,
            created_at=T0,
            updated_at=T0,
            **fields,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def make_listing(self, owner: User, created_at: datetime = T0, price="50.00", **fields) -> Listing:
        self._short_ids += 1
        short_id = fields.pop("short_id", f"s{self._short_ids:07d}")
        hours = 720 if owner.account_tier == "premium" else 48
        listing = Listing(
            short_id=short_id,
            user_id=owner.id,
            username=owner.username,
            title=fields.pop("title", "Charizard Base Set"),
            price=Decimal(price) if price is not None else None,
            game_category=fields.pop("game_category", "pokemon"),
            image_urls=fields.pop("image_urls", ["https://img.test/1.jpg"]),
            status=fields.pop("status", LISTING_ACTIVE),
            expires_at=fields.pop("expires_at", created_at + timedelta(hours=hours)),
            created_at=created_at,
            updated_at=fields.pop("updated_at", created_at),
            **fields,
        )
        self.db.add(listing)
        self.db.flush()
        self.db.add(ShortIdMapping(short_id=short_id, listing_id=listing.id, created_at=created_at))
        self.db.commit()
        return listing
