"""Shared fixtures: in-memory SQLite, config overrides and a recording notifier."""

from __future__ import annotations

import os
from datetime import datetime, timezone

os.environ["DATABASE_URL"] = "sqlite://"

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402

from core.config import (  # noqa: E402
    BookingConfig,
    PayPalConfig,
    PayoutConfig,
    RazorpayConfig,
    get_booking_config,
    get_paypal_config,
    get_payout_config,
    get_razorpay_config,
)
from core.database import Base, engine, get_db, init_db, SessionLocal  # noqa: E402
from main import app  # noqa: E402
from models.coupon import Coupon  # noqa: E402
from models.referral import Referral  # noqa: E402
from utils.emailing import get_notifier  # noqa: E402

CLIENT_EMAIL = "vihaann2.0@gmail.com"
OWNER_EMAIL = "serviroo@rooindustries.com"
HOST_TZ = "Asia/Kolkata"
CLIENT_TZ = "America/Los_Angeles"

BOOKING_CONFIG = BookingConfig(
    host_timezone=HOST_TZ,
    hold_ttl_minutes=15,
    owner_email=OWNER_EMAIL,
    mail_from="booking@roo.test",
    site_name="Roo Industries",
    logo_url="https://rooindustries.com/embed_logo.png",
    discord_invite_url="https://discord.gg/M7nTkn9dxE",
)
RAZORPAY_CONFIG = RazorpayConfig(key_id="rzp_test_key", key_secret="rzp_test_secret")
PAYOUT_CONFIG = PayoutConfig(admin_key="", cron_secret="cron-secret", webhook_secret="", auto_sync=True)


class RecordingNotifier:
    """Stands in for SMTP delivery and remembers every message."""

    def __init__(self, result: bool = True):
        self.sent: list[dict] = []
        self.result = result

    def __call__(self, message: dict) -> bool:
        self.sent.append(message)
        return self.result

    def to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_booking_config] = lambda: BOOKING_CONFIG
    app.dependency_overrides[get_razorpay_config] = lambda: RAZORPAY_CONFIG
    app.dependency_overrides[get_paypal_config] = lambda: PayPalConfig()
    app.dependency_overrides[get_payout_config] = lambda: PAYOUT_CONFIG
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_coupon(db, code: str = "FREE100", discount_percent: float = 100, **kwargs) -> Coupon:
    coupon = Coupon(code=code, discount_percent=discount_percent, title=kwargs.pop("title", code), **kwargs)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def make_referral(db, slug: str = "servi", **kwargs) -> Referral:
    referral = Referral(name=kwargs.pop("name", slug.title()), slug=slug, **kwargs)
    db.add(referral)
    db.commit()
    db.refresh(referral)
    return referral


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
