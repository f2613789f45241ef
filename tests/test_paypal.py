from __future__ import annotations

import httpx
import pytest

from conftest import BOOKING_CONFIG, RecordingNotifier, utc
from core.config import PayPalConfig
from core.errors import PaymentProofMissing
from models.booking import Booking
from utils import paypal
from utils.booking_flow import BookingRequest, BookingService
from utils.paypal import PayPalClient
from utils.slot_holds import SlotHoldManager

CONFIG = PayPalConfig(client_id="cid", client_secret="secret", api_base="https://paypal.test", verify_orders=True)


@pytest.fixture
def paypal_api(monkeypatch):
    """Route PayPalClient traffic to an in-process handler keyed by order id."""
    orders = {}
    seen = []
    real_client = httpx.Client

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok"})
        order_id = request.url.path.rsplit("/", 1)[-1]
        if order_id not in orders:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        if orders[order_id] == "ERROR":
            return httpx.Response(500, json={})
        return httpx.Response(200, json={"id": order_id, "status": orders[order_id]})

    monkeypatch.setattr(
        paypal.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return orders, seen


def test_order_status_lookup(paypal_api):
    orders, seen = paypal_api
    orders["ORDER-1"] = "completed"

    assert PayPalClient(CONFIG).get_order_status("ORDER-1") == "COMPLETED"
    assert seen[1].headers["Authorization"] == "Bearer tok"


@pytest.mark.parametrize("status, paid", [("COMPLETED", True), ("APPROVED", True), ("CREATED", False), ("ERROR", False)])
def test_order_is_paid(paypal_api, status, paid):
    orders, _ = paypal_api
    orders["ORDER-1"] = status

    assert PayPalClient(CONFIG).order_is_paid("ORDER-1") is paid


def test_unknown_order_is_not_paid(paypal_api):
    assert PayPalClient(CONFIG).get_order_status("MISSING") is None


def test_unconfigured_client_skips_lookup(paypal_api):
    _, seen = paypal_api

    assert PayPalClient(PayPalConfig()).get_order_status("ORDER-1") is None
    assert seen == []


def _paypal_booking(db, order_id):
    now = utc(2025, 1, 10, 12, 0)
    hold = SlotHoldManager(db, BOOKING_CONFIG, now=now).reserve("2025-01-15T07:59:00Z")
    service = BookingService(db, BOOKING_CONFIG, RecordingNotifier(), paypal=PayPalClient(CONFIG), now=now)
    return service.create_booking(BookingRequest(
        payment_provider="paypal",
        status="captured",
        start_time_utc="2025-01-15T07:59:00Z",
        local_time_zone="America/Los_Angeles",
        slot_hold_id=hold.id,
        package_title="XOC / Extreme Overclocking",
        package_price="$149.99",
        paypal_order_id=order_id,
    ))


def test_verified_paypal_booking(db, paypal_api):
    orders, _ = paypal_api
    orders["ORDER-1"] = "COMPLETED"

    result = _paypal_booking(db, "ORDER-1")

    assert db.query(Booking).filter(Booking.id == result.booking_id).one().paypal_order_id == "ORDER-1"


def test_unpaid_paypal_order_is_refused(db, paypal_api):
    orders, _ = paypal_api
    orders["ORDER-2"] = "CREATED"

    with pytest.raises(PaymentProofMissing) as exc:
        _paypal_booking(db, "ORDER-2")

    assert exc.value.message == "PayPal order is not completed."
    assert db.query(Booking).count() == 0
