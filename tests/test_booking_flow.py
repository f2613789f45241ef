from __future__ import annotations

import dataclasses
import random
from datetime import timedelta

import pytest
from jinja2 import FileSystemLoader

from conftest import (
    BOOKING_CONFIG,
    CLIENT_EMAIL,
    CLIENT_TZ,
    OWNER_EMAIL,
    RecordingNotifier,
    make_coupon,
    make_referral,
    utc,
)
from core.config import get_booking_config
from core.errors import InvalidRequest
from models.booking import Booking, BookingSettings, SlotHold
from main import app
from utils.booking_flow import BookingRequest, BookingService
from utils import emailing
from utils.emailing import get_notifier
from utils.ledger import round2
from utils.slot_holds import MSG_SLOT_BOOKED, SlotHoldManager

START = "2025-01-15T07:59:00.000Z"
HOST_DATE = "Wed Jan 15 2025"
HOST_TIME = "1:29 PM"
CLIENT_DATE = "Tuesday, January 14, 2025"
CLIENT_TIME = "11:59 PM"


def hold(client, start=START) -> str:
    res = client.post("/api/holdSlot", json={"startTimeUTC": start, "packageTitle": "Performance Vertex Overhaul"})
    assert res.status_code == 200, res.json()
    return res.json()["holdId"]


def payload(hold_id=None, **overrides) -> dict:
    body = {
        "paymentProvider": "razorpay",
        "status": "captured",
        "startTimeUTC": START,
        "localTimeZone": CLIENT_TZ,
        "slotHoldId": hold_id,
        "email": CLIENT_EMAIL,
        "discord": "vihaan#0001",
        "specs": "Ryzen 7 7800X3D / RTX 4080",
        "mainGame": "Valorant",
        "message": "Evenings work best",
        "packageTitle": "Performance Vertex Overhaul",
        "packagePrice": "$84.99",
        "razorpayOrderId": "order_Q1",
        "razorpayPaymentId": "pay_Q1",
    }
    body.update(overrides)
    return body


def book(client, body, path="/api/createBooking"):
    return client.post(path, json=body)


# ---- Happy path ----

def test_paid_booking_is_stored_with_host_slot(client, db):
    res = book(client, payload(hold(client)))

    assert res.status_code == 200, res.json()
    booking = db.query(Booking).filter(Booking.id == res.json()["bookingId"]).one()
    assert (booking.host_date, booking.host_time) == (HOST_DATE, HOST_TIME)
    assert booking.host_time_zone == "Asia/Kolkata"
    assert (booking.display_date, booking.display_time) == (CLIENT_DATE, CLIENT_TIME)
    assert booking.status == "captured"
    assert booking.order_id == booking.id
    assert booking.gross_amount == 84.99
    assert booking.net_amount == 84.99
    assert booking.discount_amount == 0
    assert db.query(SlotHold).count() == 0


def test_referral_route_alias_creates_booking(client):
    res = book(client, payload(hold(client)), path="/api/ref/createBooking")

    assert res.status_code == 200
    assert res.json()["bookingId"]


def test_client_email_only_shows_client_time(client, notifier):
    book(client, payload(hold(client)))

    [message] = notifier.to(CLIENT_EMAIL)
    html = message["html"]
    assert message["subject"] == "Your Roo Industries booking request"
    assert CLIENT_DATE in html
    assert f"{CLIENT_TIME} ({CLIENT_TZ})" in html
    assert "https://discord.gg/M7nTkn9dxE" in html
    for leaked in ("Asia/Kolkata", "UTC", HOST_DATE, HOST_TIME):
        assert leaked not in html
        assert leaked not in message["subject"]


def test_owner_email_shows_host_client_and_utc(client, notifier):
    book(client, payload(hold(client)))

    [message] = notifier.to(OWNER_EMAIL)
    html = message["html"]
    assert message["subject"] == f"New booking - Performance Vertex Overhaul ({HOST_DATE} {HOST_TIME})"
    assert HOST_DATE in html
    assert f"{HOST_TIME} (Asia/Kolkata)" in html
    assert CLIENT_DATE in html
    assert f"{CLIENT_TIME} ({CLIENT_TZ})" in html
    assert "Start (UTC)" in html
    assert START in html


@pytest.mark.parametrize(
    "start, client_date, client_time",
    [
        ("2025-01-15T08:00:00.000Z", "Wednesday, January 15, 2025", "12:00 AM"),
        ("2025-01-15T18:30:00.000Z", "Wednesday, January 15, 2025", "10:30 AM"),
    ],
)
def test_emails_around_midnight(client, notifier, start, client_date, client_time):
    res = book(client, payload(hold(client, start), startTimeUTC=start))
    assert res.status_code == 200

    client_html = notifier.to(CLIENT_EMAIL)[0]["html"]
    owner_html = notifier.to(OWNER_EMAIL)[0]["html"]
    assert client_date in client_html and client_time in client_html
    assert "Asia/Kolkata" not in client_html
    assert client_date in owner_html and start in owner_html


def test_booking_without_email_only_notifies_owner(client, notifier):
    res = book(client, payload(hold(client), email=""))

    assert res.status_code == 200
    assert [m["to"] for m in notifier.sent] == [OWNER_EMAIL]


def test_owner_address_comes_from_settings(client, db, notifier):
    db.add(BookingSettings(owner_email="calendar@rooindustries.com"))
    db.commit()

    book(client, payload(hold(client)))

    assert notifier.to("calendar@rooindustries.com")
    assert not notifier.to(OWNER_EMAIL)


def test_no_sender_skips_emails(client, notifier):
    app.dependency_overrides[get_booking_config] = lambda: dataclasses.replace(BOOKING_CONFIG, mail_from="")

    res = book(client, payload(hold(client)))

    assert res.status_code == 200
    assert notifier.sent == []


def test_display_labels_from_client_are_kept(client, db):
    res = book(client, payload(hold(client), localTimeZone="", displayDate="Tue, Jan 14", displayTime="11:59 pm"))

    booking = db.query(Booking).filter(Booking.id == res.json()["bookingId"]).one()
    assert (booking.display_date, booking.display_time) == ("Tue, Jan 14", "11:59 pm")


# ---- Slot rules ----

def test_second_booking_on_same_slot_conflicts(client, notifier):
    assert book(client, payload(hold(client))).status_code == 200

    res = client.post("/api/holdSlot", json={"startTimeUTC": START})
    assert res.status_code == 409
    assert res.json()["message"] == MSG_SLOT_BOOKED

    res = book(client, payload("stale-hold", razorpayPaymentId="pay_Q2"))
    assert res.status_code == 409
    assert len(notifier.sent) == 2


def test_booking_without_hold_is_rejected(client, notifier):
    res = book(client, payload(None))

    assert res.status_code == 409
    assert res.json()["error"] == "Your slot reservation has expired. Please rebook."
    assert notifier.sent == []


def test_expired_hold_is_rejected_and_purged(client, db, notifier):
    hold_id = hold(client)
    row = db.query(SlotHold).filter(SlotHold.id == hold_id).one()
    row.expires_at = utc(2020, 1, 1)
    db.commit()

    res = book(client, payload(hold_id))

    assert res.status_code == 409
    assert "expired" in res.json()["error"]
    assert db.query(SlotHold).count() == 0
    assert db.query(Booking).count() == 0
    assert notifier.sent == []


def test_stale_hold_loses_to_newer_reservation(client, db):
    first = hold(client)
    db.query(SlotHold).filter(SlotHold.id == first).update({SlotHold.expires_at: utc(2020, 1, 1)})
    db.commit()
    second = hold(client)

    res = book(client, payload(first))
    assert res.status_code == 409

    res = book(client, payload(second))
    assert res.status_code == 200


def test_hold_for_another_time_is_rejected(client):
    hold_id = hold(client, "2025-01-15T09:00:00.000Z")

    res = book(client, payload(hold_id))

    assert res.status_code == 400
    assert "does not match" in res.json()["error"]


def test_upgrade_skips_hold_and_slot_check(client, db):
    original = book(client, payload(hold(client))).json()["bookingId"]

    res = book(client, payload(None, originalOrderId=original, razorpayPaymentId="pay_UP"))

    assert res.status_code == 200
    upgrade = db.query(Booking).filter(Booking.id == res.json()["bookingId"]).one()
    assert upgrade.original_order_id == original
    assert upgrade.is_upgrade
    assert db.query(Booking).count() == 2


# ---- Provider and payment proof ----

@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"paymentProvider": ""}, "Missing payment provider."),
        ({"paymentProvider": "stripe"}, "Unsupported payment provider: stripe."),
        ({"razorpayPaymentId": ""}, "Missing payment confirmation for a captured booking."),
        ({"status": "pending"}, "Paid bookings must be submitted as captured."),
        ({"paymentProvider": "paypal"}, "Missing payment confirmation for a captured booking."),
        ({"startTimeUTC": "soon"}, "Invalid startTimeUTC."),
        ({"grossAmount": "lots"}, None),
    ],
)
def test_bad_requests_are_rejected_before_writing(client, db, notifier, overrides, message):
    res = book(client, payload(hold(client), **overrides))

    assert res.status_code == 400
    if message:
        assert res.json()["error"] == message
    assert db.query(Booking).count() == 0
    assert notifier.sent == []


def test_paypal_booking(client, db, notifier):
    res = book(client, payload(hold(client), paymentProvider="paypal", paypalOrderId="5O190127TN364715T",
                               payerEmail="payer@example.com", razorpayPaymentId=None, razorpayOrderId=None))

    assert res.status_code == 200
    booking = db.query(Booking).one()
    assert booking.id == res.json()["bookingId"]
    assert booking.paypal_order_id == "5O190127TN364715T"
    assert booking.payment_provider == "paypal"
    assert db.query(SlotHold).count() == 0
    assert sorted(m["to"] for m in notifier.sent) == sorted([CLIENT_EMAIL, OWNER_EMAIL])
    assert "Asia/Kolkata" not in notifier.to(CLIENT_EMAIL)[0]["html"]
    assert "UTC" not in notifier.to(CLIENT_EMAIL)[0]["html"]
    assert "Asia/Kolkata" in notifier.to(OWNER_EMAIL)[0]["html"]
    assert "UTC" in notifier.to(OWNER_EMAIL)[0]["html"]


def test_reused_payment_id_is_rejected(client):
    assert book(client, payload(hold(client))).status_code == 200

    other = "2025-01-16T07:59:00.000Z"
    res = book(client, payload(hold(client, other), startTimeUTC=other))

    assert res.status_code == 409
    assert "already been used" in res.json()["error"]


def test_bad_razorpay_signature_is_rejected(client):
    res = book(client, payload(hold(client), razorpaySignature="deadbeef"))

    assert res.status_code == 400
    assert res.json()["error"] == "Invalid payment signature."


# ---- Free bookings and coupons ----

def free_payload(hold_id, code="FREE100", **overrides):
    return payload(hold_id, paymentProvider="free", couponCode=code, razorpayPaymentId=None,
                   razorpayOrderId=None, **overrides)


def test_free_booking_consumes_coupon(client, db):
    coupon = make_coupon(db, "FREE100", 100, max_uses=1)

    res = book(client, free_payload(hold(client), code="free100"))

    assert res.status_code == 200, res.json()
    booking = db.query(Booking).one()
    assert booking.payment_provider == "free"
    assert (booking.gross_amount, booking.discount_percent, booking.discount_amount, booking.net_amount) == (
        84.99, 100, 84.99, 0,
    )
    assert booking.coupon_discount_percent == 100
    db.refresh(coupon)
    assert coupon.times_used == 1
    assert coupon.is_active is False


def test_exhausted_coupon_is_refused(client, db):
    make_coupon(db, "FREE100", 100, max_uses=1)
    assert book(client, free_payload(hold(client))).status_code == 200

    other = "2025-01-16T07:59:00.000Z"
    res = book(client, free_payload(hold(client, other), startTimeUTC=other))

    assert res.status_code == 400
    assert res.json()["error"] == "This coupon is not active."


def test_free_booking_requires_full_discount(client, db):
    make_coupon(db, "HALF", 50)

    res = book(client, free_payload(hold(client), code="HALF"))

    assert res.status_code == 400
    assert res.json()["error"] == "Coupon is not a full discount."


def test_free_booking_requires_coupon(client):
    res = book(client, free_payload(hold(client), code=""))

    assert res.status_code == 400
    assert res.json()["error"] == "A coupon code is required for free bookings."


def test_free_booking_with_unknown_coupon(client):
    res = book(client, free_payload(hold(client), code="NOPE"))

    assert res.status_code == 400
    assert res.json()["error"] == "Coupon not found or invalid."


def test_paid_booking_counts_coupon_use(client, db):
    coupon = make_coupon(db, "SAVE10", 10)

    res = book(client, payload(hold(client), couponCode="save10", discountPercent=10))

    assert res.status_code == 200
    booking = db.query(Booking).one()
    assert booking.discount_amount == 8.5
    assert booking.net_amount == 76.49
    assert booking.coupon_discount_amount == 8.5
    db.refresh(coupon)
    assert coupon.times_used == 1
    assert coupon.is_active is True


# ---- Referrals and amounts ----

def test_referral_code_earns_locked_default_commission(client, db):
    referral = make_referral(db, "servi", current_commission_percent=14, current_discount_percent=1)

    res = book(client, payload(hold(client), referralCode="SERVI"))

    assert res.status_code == 200
    booking = db.query(Booking).one()
    assert booking.referral_id == referral.id
    assert booking.commission_percent == 10
    assert booking.commission_amount == 8.5
    db.refresh(referral)
    assert referral.successful_referrals == 1


def test_unlocked_referral_uses_its_split(client, db):
    make_referral(db, "servi", successful_referrals=5, current_commission_percent=12, current_discount_percent=3)

    book(client, payload(hold(client), referralCode="servi"))

    booking = db.query(Booking).one()
    assert booking.commission_percent == 12
    assert booking.discount_percent == 3
    assert booking.discount_amount == round2(84.99 * 3 / 100)
    assert booking.net_amount == round2(84.99 - booking.discount_amount)


def test_inconsistent_amounts_are_rejected(client, db):
    res = book(client, payload(hold(client), grossAmount=100, discountAmount=10, netAmount=50))

    assert res.status_code == 400
    assert "do not add up" in res.json()["error"]
    assert db.query(Booking).count() == 0


def test_discount_and_net_always_add_up_to_gross(db):
    service = BookingService(db, BOOKING_CONFIG, RecordingNotifier())
    rng = random.Random(3)
    for _ in range(300):
        gross = round(rng.uniform(1, 500), 2)
        percent = rng.choice([0, 5, 7.5, 10, 12.5, 33, 99])
        req = BookingRequest(gross_amount=gross, discount_percent=percent, commission_percent=10)

        amounts = service._compute_amounts(req, "paypal", None, None)

        assert round2(amounts.discount_amount + amounts.net) == amounts.gross
        assert amounts.net >= 0
        assert amounts.commission_amount == round2(amounts.net * 10 / 100)


@pytest.mark.parametrize(
    "fields, discount, net",
    [
        ({"discount_amount": 10, "net_amount": 90}, 10.0, 90.0),
        ({"discount_amount": 10.004, "net_amount": 89.996}, 10.0, 90.0),
        ({"discount_amount": 12.346}, 12.35, 87.65),
        ({"net_amount": 66.666}, 33.33, 66.67),
        ({"discount_percent": 7.5}, 7.5, 92.5),
    ],
)
def test_every_amount_branch_sums_to_gross_exactly(db, fields, discount, net):
    service = BookingService(db, BOOKING_CONFIG, RecordingNotifier())
    req = BookingRequest(gross_amount=100, **fields)

    amounts = service._compute_amounts(req, "razorpay", None, None)

    assert (amounts.discount_amount, amounts.net) == (discount, net)
    assert round2(amounts.discount_amount + amounts.net) == round2(amounts.gross)


def test_supplied_amounts_off_by_a_fraction_of_a_cent_are_rejected(db):
    service = BookingService(db, BOOKING_CONFIG, RecordingNotifier())
    req = BookingRequest(gross_amount=100, discount_amount=10, net_amount=89.991)

    with pytest.raises(InvalidRequest, match="do not add up"):
        service._compute_amounts(req, "razorpay", None, None)


def test_stored_amounts_sum_to_stored_gross(client, db):
    res = book(client, payload(hold(client), grossAmount=84.99, netAmount=76.494))

    assert res.status_code == 200
    booking = db.query(Booking).one()
    assert booking.net_amount == 76.49
    assert booking.discount_amount == 8.5
    assert round2(booking.discount_amount + booking.net_amount) == booking.gross_amount


# ---- Post-commit side effects ----

def test_failed_notifications_do_not_fail_booking(client, db):
    app.dependency_overrides[get_notifier] = lambda: RecordingNotifier(result=False)

    res = book(client, payload(hold(client)))

    assert res.status_code == 200
    assert db.query(Booking).count() == 1


def test_raising_notifier_is_recorded_as_diagnostic(db):
    def explode(message):
        raise RuntimeError("smtp down")

    now = utc(2025, 1, 10, 12, 0)
    hold_row = SlotHoldManager(db, BOOKING_CONFIG, now=now).reserve(START)
    service = BookingService(db, BOOKING_CONFIG, explode, now=now + timedelta(minutes=1))

    result = service.create_booking(BookingRequest.model_validate(payload(hold_row.id)))

    assert result.booking_id
    assert [d["task"] for d in result.diagnostics] == ["notify_client", "notify_owner"]
    assert all(d["error"] == "smtp down" for d in result.diagnostics)
    assert db.query(Booking).count() == 1


def test_email_render_failure_does_not_fail_booking(client, db, notifier, monkeypatch, tmp_path):
    # An empty template directory makes every render raise TemplateNotFound
    monkeypatch.setattr(emailing._jinja_env, "loader", FileSystemLoader(str(tmp_path)))

    res = book(client, payload(hold(client)))

    assert res.status_code == 200
    assert res.json()["bookingId"]
    assert db.query(Booking).count() == 1
    assert db.query(SlotHold).count() == 0
    assert notifier.sent == []


def test_email_render_failure_is_recorded_as_diagnostic(db, monkeypatch, tmp_path):
    monkeypatch.setattr(emailing._jinja_env, "loader", FileSystemLoader(str(tmp_path)))
    now = utc(2025, 1, 10, 12, 0)
    hold_row = SlotHoldManager(db, BOOKING_CONFIG, now=now).reserve(START)
    service = BookingService(db, BOOKING_CONFIG, RecordingNotifier(), now=now + timedelta(minutes=1))

    result = service.create_booking(BookingRequest.model_validate(payload(hold_row.id)))

    assert result.booking_id
    assert [d["task"] for d in result.diagnostics] == ["notify_client", "notify_owner"]


def test_owner_lookup_failure_still_sends_client_email(db, monkeypatch):
    def broken_lookup():
        raise RuntimeError("settings table unavailable")

    notifier = RecordingNotifier()
    now = utc(2025, 1, 10, 12, 0)
    hold_row = SlotHoldManager(db, BOOKING_CONFIG, now=now).reserve(START)
    service = BookingService(db, BOOKING_CONFIG, notifier, now=now + timedelta(minutes=1))
    monkeypatch.setattr(service, "_resolve_owner", broken_lookup)

    result = service.create_booking(BookingRequest.model_validate(payload(hold_row.id)))

    assert result.booking_id
    assert result.diagnostics == [{"task": "notify_owner", "error": "settings table unavailable"}]
    assert [m["to"] for m in notifier.sent] == [CLIENT_EMAIL]


def test_no_owner_address_skips_owner_email(db):
    config = dataclasses.replace(BOOKING_CONFIG, owner_email="")
    notifier = RecordingNotifier()
    now = utc(2025, 1, 10, 12, 0)
    hold_row = SlotHoldManager(db, config, now=now).reserve(START)
    service = BookingService(db, config, notifier, now=now + timedelta(minutes=1))

    result = service.create_booking(BookingRequest.model_validate(payload(hold_row.id)))

    assert result.diagnostics == []
    assert [m["to"] for m in notifier.sent] == [CLIENT_EMAIL]


# ---- Coupon and referral combination ----

def test_coupon_that_cannot_combine_rejects_referral(client, db, notifier):
    make_coupon(db, "SAVE10", 10, can_combine_with_referral=False)
    make_referral(db, "servi")

    res = book(client, payload(hold(client), couponCode="SAVE10", referralCode="servi"))

    assert res.status_code == 400
    assert res.json()["error"] == "This coupon cannot be combined with a referral code."
    assert db.query(Booking).count() == 0
    assert notifier.sent == []


def test_free_coupon_that_cannot_combine_rejects_referral(client, db):
    make_coupon(db, "FREE100", 100)
    make_referral(db, "servi")

    res = book(client, free_payload(hold(client), referralCode="servi"))

    assert res.status_code == 400
    assert "cannot be combined" in res.json()["error"]
    assert db.query(Booking).count() == 0


def test_combinable_coupon_keeps_referral(client, db):
    coupon = make_coupon(db, "STACK5", 5, can_combine_with_referral=True)
    referral = make_referral(db, "servi")

    res = book(client, payload(hold(client), couponCode="stack5", referralCode="servi"))

    assert res.status_code == 200
    booking = db.query(Booking).one()
    assert booking.referral_id == referral.id
    assert booking.coupon_code == "stack5"
    db.refresh(coupon)
    db.refresh(referral)
    assert coupon.times_used == 1
    assert referral.successful_referrals == 1
