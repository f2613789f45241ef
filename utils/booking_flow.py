"""
Booking creation: turns a validated payment (or a 100% coupon) plus an active
slot hold into a durable booking.

Checks run in a fixed order and the first failure decides the error the client
sees. Nothing is written until every check has passed; once the booking row is
committed, the remaining side effects run as independent post-commit tasks.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import BookingConfig, logger
from core.errors import (
    CouponInvalid,
    DuplicatePayment,
    HoldExpired,
    InvalidRequest,
    PaymentProofMissing,
    SlotConflict,
    UnsupportedProvider,
)
from models.booking import Booking, BookingSettings, BookingStatus, PaymentProvider, as_utc
from models.coupon import Coupon
from models.referral import Referral
from utils.coupons import ensure_usable, find_coupon
from utils.emailing import Notifier, render_email
from utils.ledger import parse_price, round2
from utils.paypal import PayPalClient
from utils.post_commit import PostCommitTasks
from utils.razorpay_gateway import RazorpayGateway
from utils.referrals import find_referral_by_code, split_for
from utils.slot_holds import MSG_SLOT_HELD, SlotHoldManager
from utils.timezones import client_date_label, client_time_label, format_utc, host_slot, parse_utc

PROVIDERS = tuple(p.value for p in PaymentProvider)


class BookingRequest(BaseModel):
    """Incoming booking payload; camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    payment_provider: Optional[str] = None
    status: Optional[str] = None

    # Scheduling
    start_time_utc: Optional[str] = Field(default=None, alias="startTimeUTC")
    local_time_zone: Optional[str] = None
    display_date: Optional[str] = None
    display_time: Optional[str] = None
    slot_hold_id: Optional[str] = None

    # Client details
    discord: Optional[str] = None
    email: Optional[str] = None
    specs: Optional[str] = None
    main_game: Optional[str] = None
    message: Optional[str] = None

    # Package and money
    package_title: Optional[str] = None
    package_price: Optional[str] = None
    gross_amount: Optional[float] = None
    discount_percent: Optional[float] = None
    discount_amount: Optional[float] = None
    net_amount: Optional[float] = None
    commission_percent: Optional[float] = None

    # Attribution
    referral_id: Optional[str] = None
    referral_code: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount_percent: Optional[float] = None
    coupon_discount_amount: Optional[float] = None

    # Provider proof
    paypal_order_id: Optional[str] = None
    payer_email: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None

    order_id: Optional[str] = None
    original_order_id: Optional[str] = None


@dataclass
class BookingResult:
    booking_id: str
    diagnostics: list = field(default_factory=list)


@dataclass
class _Amounts:
    gross: float
    discount_percent: float
    discount_amount: float
    net: float
    commission_percent: float
    commission_amount: float
    coupon_discount_percent: Optional[float] = None
    coupon_discount_amount: Optional[float] = None


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _given(value: Optional[float]) -> bool:
    return value is not None and value != 0


def _pct(value: float) -> str:
    return f"{value:g}"


class BookingService:
    def __init__(
        self,
        db: Session,
        config: BookingConfig,
        notify: Notifier,
        razorpay: Optional[RazorpayGateway] = None,
        paypal: Optional[PayPalClient] = None,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.config = config
        self.notify = notify
        self.razorpay = razorpay
        self.paypal = paypal
        self._now = now
        self.holds = SlotHoldManager(db, config, now=now)

    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    # ---- Validation pipeline ----

    def _check_provider(self, req: BookingRequest) -> str:
        provider = _clean(req.payment_provider).lower()
        if not provider:
            raise InvalidRequest("Missing payment provider.")
        if provider not in PROVIDERS:
            raise UnsupportedProvider(f"Unsupported payment provider: {provider}.")
        return provider

    def _check_free(self, req: BookingRequest) -> Coupon:
        if _clean(req.status).lower() != BookingStatus.CAPTURED.value:
            raise InvalidRequest("Free bookings must be submitted as captured.")
        if not _clean(req.coupon_code):
            raise InvalidRequest("A coupon code is required for free bookings.")
        coupon = ensure_usable(find_coupon(self.db, req.coupon_code), self.now())
        if float(coupon.discount_percent or 0) != 100:
            raise CouponInvalid("Coupon is not a full discount.")
        return coupon

    def _check_paid_status(self, req: BookingRequest) -> None:
        if _clean(req.status).lower() != BookingStatus.CAPTURED.value:
            raise InvalidRequest("Paid bookings must be submitted as captured.")

    def _check_payment_proof(self, req: BookingRequest, provider: str) -> None:
        if provider == PaymentProvider.PAYPAL.value:
            order_id = _clean(req.paypal_order_id)
            if not order_id:
                raise PaymentProofMissing()
            if self.paypal is not None and self.paypal.config.verify_orders:
                if not self.paypal.order_is_paid(order_id):
                    raise PaymentProofMissing("PayPal order is not completed.")
            taken = self.db.query(Booking.id).filter(Booking.paypal_order_id == order_id).first()
        else:
            payment_id = _clean(req.razorpay_payment_id)
            if not payment_id:
                raise PaymentProofMissing()
            signature = _clean(req.razorpay_signature)
            if signature and self.razorpay is not None:
                if not self.razorpay.verify_signature(_clean(req.razorpay_order_id), payment_id, signature):
                    raise PaymentProofMissing("Invalid payment signature.")
            taken = self.db.query(Booking.id).filter(Booking.razorpay_payment_id == payment_id).first()
        if taken is not None:
            raise DuplicatePayment()

    def _resolve_host_slot(self, req: BookingRequest) -> tuple[datetime, str, str]:
        if not _clean(req.start_time_utc):
            raise InvalidRequest("Missing startTimeUTC.")
        utc_start = parse_utc(req.start_time_utc)
        if utc_start is None:
            raise InvalidRequest("Invalid startTimeUTC.")
        host_date, host_time = host_slot(utc_start, self.config.host_timezone)
        if not host_date or not host_time:
            raise InvalidRequest("Could not derive host date/time.")
        return utc_start, host_date, host_time

    def _resolve_display(self, req: BookingRequest, utc_start: datetime) -> tuple[str, str]:
        zone = _clean(req.local_time_zone)
        display_date = _clean(req.display_date) or client_date_label(utc_start, zone)
        display_time = _clean(req.display_time) or client_time_label(utc_start, zone)
        if not display_date or not display_time:
            raise InvalidRequest("Missing client date/time (displayDate/displayTime or localTimeZone).")
        return display_date, display_time

    def _check_slot(self, req: BookingRequest, utc_start: datetime, host_date: str, host_time: str) -> None:
        if self.holds.booking_exists(host_date, host_time):
            logger.info(f"[booking.create] slot taken {host_date} {host_time}")
            raise SlotConflict()

        hold = self.holds.get_hold(_clean(req.slot_hold_id))
        if hold is None:
            raise HoldExpired()
        if not hold.is_active(self.now()):
            self.holds.expire(hold)
            raise HoldExpired()

        hold_start = as_utc(hold.start_time_utc)
        if hold_start is not None:
            matches = hold_start == utc_start
        else:
            matches = (hold.host_date, hold.host_time) == (host_date, host_time)
        if not matches:
            raise InvalidRequest("Slot hold does not match the selected time. Please rebook.")

        if self.holds.find_active_hold(host_date, host_time, exclude_id=hold.id):
            raise SlotConflict(MSG_SLOT_HELD)

    def _resolve_referral(self, req: BookingRequest) -> Optional[Referral]:
        referral_id = _clean(req.referral_id)
        if referral_id:
            referral = self.db.query(Referral).filter(Referral.id == referral_id).first()
            if referral is not None:
                return referral
        return find_referral_by_code(self.db, req.referral_code)

    def _compute_amounts(
        self,
        req: BookingRequest,
        provider: str,
        coupon: Optional[Coupon],
        referral: Optional[Referral],
    ) -> _Amounts:
        gross = round2(req.gross_amount if _given(req.gross_amount) else parse_price(req.package_price))
        if gross < 0:
            raise InvalidRequest("Invalid gross amount.")

        default_commission, default_discount = split_for(referral) if referral is not None else (0.0, 0.0)
        commission_percent = req.commission_percent if _given(req.commission_percent) else default_commission
        if not 0 <= commission_percent <= 100:
            raise InvalidRequest("Invalid commission percent.")

        if provider == PaymentProvider.FREE.value:
            discount_percent = 100.0
            discount_amount = round2(gross)
            net = 0.0
        else:
            discount_percent = req.discount_percent if _given(req.discount_percent) else default_discount
            if not 0 <= discount_percent <= 100:
                raise InvalidRequest("Invalid discount percent.")

            if _given(req.discount_amount) and _given(req.net_amount):
                discount_amount, net = round2(req.discount_amount), round2(req.net_amount)
                if round2(discount_amount + net) != gross:
                    raise InvalidRequest("Discount and net amounts do not add up to the gross amount.")
            elif _given(req.discount_amount):
                discount_amount = round2(req.discount_amount)
                net = round2(gross - discount_amount)
            elif _given(req.net_amount):
                net = round2(req.net_amount)
                discount_amount = round2(gross - net)
            else:
                discount_amount = round2(gross * discount_percent / 100) if discount_percent else 0.0
                net = round2(gross - discount_amount)

            if discount_amount < 0 or net < 0:
                raise InvalidRequest("Discount cannot exceed the gross amount.")

        commission_amount = round2((net or gross) * commission_percent / 100)

        amounts = _Amounts(
            gross=gross,
            discount_percent=discount_percent,
            discount_amount=discount_amount,
            net=net,
            commission_percent=commission_percent,
            commission_amount=commission_amount,
        )
        if _clean(req.coupon_code):
            coupon_percent = req.coupon_discount_percent
            if coupon_percent is None and coupon is not None:
                coupon_percent = float(coupon.discount_percent or 0)
            coupon_amount = req.coupon_discount_amount
            if coupon_amount is None and coupon_percent:
                coupon_amount = round2(gross * coupon_percent / 100)
            amounts.coupon_discount_percent = coupon_percent or 0.0
            amounts.coupon_discount_amount = coupon_amount or 0.0
        return amounts

    # ---- Entry point ----

    def create_booking(self, req: BookingRequest) -> BookingResult:
        provider = self._check_provider(req)
        coupon = None
        if provider == PaymentProvider.FREE.value:
            coupon = self._check_free(req)
        else:
            self._check_paid_status(req)
            self._check_payment_proof(req, provider)
            # Paid bookings only snapshot the coupon; usage is still counted
            coupon = find_coupon(self.db, req.coupon_code)

        utc_start, host_date, host_time = self._resolve_host_slot(req)
        display_date, display_time = self._resolve_display(req, utc_start)

        upgrade = bool(_clean(req.original_order_id))
        if not upgrade:
            self._check_slot(req, utc_start, host_date, host_time)

        referral = self._resolve_referral(req)
        if coupon is not None and referral is not None and not coupon.can_combine_with_referral:
            raise CouponInvalid("This coupon cannot be combined with a referral code.")
        amounts = self._compute_amounts(req, provider, coupon, referral)

        booking = Booking(
            order_id=_clean(req.order_id) or None,
            host_date=host_date,
            host_time=host_time,
            host_time_zone=self.config.host_timezone,
            start_time_utc=utc_start,
            local_time_zone=_clean(req.local_time_zone) or None,
            display_date=display_date,
            display_time=display_time,
            email=_clean(req.email) or None,
            discord=_clean(req.discord) or None,
            specs=req.specs,
            main_game=req.main_game,
            message=req.message,
            package_title=req.package_title,
            package_price=req.package_price,
            payment_provider=provider,
            status=BookingStatus.CAPTURED.value,
            paypal_order_id=_clean(req.paypal_order_id) or None,
            payer_email=_clean(req.payer_email) or None,
            razorpay_order_id=_clean(req.razorpay_order_id) or None,
            razorpay_payment_id=_clean(req.razorpay_payment_id) or None,
            gross_amount=amounts.gross,
            discount_percent=amounts.discount_percent,
            discount_amount=amounts.discount_amount,
            net_amount=amounts.net,
            commission_percent=amounts.commission_percent,
            commission_amount=amounts.commission_amount,
            coupon_code=_clean(req.coupon_code) or None,
            coupon_discount_percent=amounts.coupon_discount_percent,
            coupon_discount_amount=amounts.coupon_discount_amount,
            referral_id=referral.id if referral is not None else (_clean(req.referral_id) or None),
            referral_code=_clean(req.referral_code) or None,
            original_order_id=_clean(req.original_order_id) or None,
        )
        self.db.add(booking)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"[booking.create] lost race {host_date} {host_time}")
            raise SlotConflict()
        self.db.refresh(booking)
        logger.info(
            f"[booking.create] booking={booking.id} provider={provider} slot={host_date} {host_time}"
            f"{' upgrade=' + booking.original_order_id if upgrade else ''}"
        )

        tasks = PostCommitTasks(self.db, "booking.create")
        tasks.run("backfill_order_id", lambda: self._backfill_order_id(booking))
        if not upgrade:
            tasks.run("release_holds", lambda: self.holds.delete_holds_for_slot(host_date, host_time))
        if referral is not None:
            tasks.run("increment_referral", lambda: self._increment_referral(referral.id))
        if coupon is not None:
            tasks.run("increment_coupon", lambda: self._increment_coupon(coupon))

        self._dispatch_emails(tasks, booking, utc_start)

        if tasks.diagnostics:
            logger.warning(f"[booking.create] booking={booking.id} side effects failed: {tasks.diagnostics}")
        return BookingResult(booking_id=booking.id, diagnostics=tasks.diagnostics)

    # ---- Post-commit side effects ----

    def _backfill_order_id(self, booking: Booking) -> bool:
        if not booking.order_id:
            booking.order_id = booking.id
        return True

    def _increment_referral(self, referral_id: str) -> bool:
        updated = (
            self.db.query(Referral)
            .filter(Referral.id == referral_id)
            .update({Referral.successful_referrals: Referral.successful_referrals + 1}, synchronize_session=False)
        )
        return updated > 0

    def _increment_coupon(self, coupon: Coupon) -> bool:
        q = self.db.query(Coupon).filter(Coupon.id == coupon.id)
        limited = bool(coupon.max_uses and coupon.max_uses > 0)
        if limited:
            q = q.filter(Coupon.times_used < Coupon.max_uses)
        updated = q.update({Coupon.times_used: Coupon.times_used + 1}, synchronize_session=False)
        if updated and limited:
            self.db.query(Coupon).filter(
                Coupon.id == coupon.id,
                Coupon.times_used >= Coupon.max_uses,
            ).update({Coupon.is_active: False}, synchronize_session=False)
        return updated > 0

    def _resolve_owner(self) -> str:
        settings = self.db.query(BookingSettings).order_by(BookingSettings.id).first()
        owner = _clean(settings.owner_email) if settings is not None else ""
        return owner or self.config.owner_email

    def _dispatch_emails(self, tasks: PostCommitTasks, booking: Booking, utc_start: datetime) -> None:
        sender = self.config.mail_from
        if not sender:
            logger.info(f"[booking.create] mail sender not configured; skipping emails for booking={booking.id}")
            return
        if booking.email:
            tasks.run("notify_client", lambda: self._notify_client(booking, sender))
        tasks.run("notify_owner", lambda: self._notify_owner(booking, utc_start, sender))

    def _notify_client(self, booking: Booking, sender: str) -> bool:
        return self.notify({
            "from": sender,
            "to": booking.email,
            "subject": f"Your {self.config.site_name} booking request",
            "html": render_email(
                "booking_notification.html",
                site_name=self.config.site_name,
                logo_url=self.config.logo_url,
                heading="Booking Received",
                intro="Thanks for booking! We'll reach out on Discord/Email to confirm your time.",
                fields=client_fields(booking, self.config),
            ),
        })

    def _notify_owner(self, booking: Booking, utc_start: datetime, sender: str) -> bool:
        owner = self._resolve_owner()
        if not owner:
            logger.info(f"[booking.create] no owner address; skipping owner email for booking={booking.id}")
            return True
        return self.notify({
            "from": sender,
            "to": owner,
            "subject": f"New booking - {booking.package_title or 'Booking'} ({booking.host_date} {booking.host_time})",
            "html": render_email(
                "booking_notification.html",
                site_name=self.config.site_name,
                logo_url=self.config.logo_url,
                heading="New Booking Received",
                intro="A new booking was submitted:",
                fields=owner_fields(booking, utc_start),
            ),
        })


# ---- Email field sets ----

def _has_discount(booking: Booking) -> bool:
    return bool(booking.discount_percent or booking.discount_amount)


def _shared_fields(booking: Booking) -> list[dict]:
    if _has_discount(booking):
        price = f"${booking.net_amount:.2f} (was ${booking.gross_amount:.2f})"
    else:
        price = booking.package_price or "-"
    return [
        {"label": "Package", "value": booking.package_title or "-"},
        {"label": "Price", "value": price},
        {"label": "Discord", "value": booking.discord or "-"},
        {"label": "Email", "value": booking.email or "-"},
        {"label": "Main Game", "value": booking.main_game or "-"},
        {"label": "PC Specs", "value": booking.specs or "-"},
        {"label": "Notes", "value": booking.message or "-"},
    ]


def _money_fields(booking: Booking, include_totals: bool) -> list[dict]:
    fields = []
    if booking.referral_code:
        fields.append({"label": "Referral Code", "value": booking.referral_code})
    if _has_discount(booking):
        fields.append({
            "label": "Total Discount",
            "value": f"{_pct(booking.discount_percent or 0)}% (-${booking.discount_amount or 0:.2f})",
        })
    if booking.coupon_code:
        fields.append({"label": "Coupon Code", "value": booking.coupon_code})
        if booking.coupon_discount_percent or booking.coupon_discount_amount:
            fields.append({
                "label": "Coupon Discount",
                "value": f"{_pct(booking.coupon_discount_percent or 0)}% (-${booking.coupon_discount_amount or 0:.2f})",
            })
    if include_totals:
        fields.append({"label": "Gross Amount", "value": f"${booking.gross_amount or 0:.2f}"})
        fields.append({"label": "Net Amount", "value": f"${booking.net_amount or 0:.2f}"})
        if booking.commission_percent or booking.commission_amount:
            fields.append({
                "label": "Commission",
                "value": f"{_pct(booking.commission_percent or 0)}% (${booking.commission_amount or 0:.2f})",
            })
    if booking.original_order_id:
        fields.append({"label": "Upgrade From Order", "value": booking.original_order_id})
    fields.append({"label": "Order ID", "value": booking.order_id or booking.id})
    return fields


def client_fields(booking: Booking, config: BookingConfig) -> list[dict]:
    """Client copy: only the client's own date, time and zone."""
    your_time = booking.display_time or "-"
    if booking.display_time and booking.local_time_zone:
        your_time = f"{booking.display_time} ({booking.local_time_zone})"
    fields = []
    if config.discord_invite_url:
        fields.append({
            "label": "Discord Server",
            "value": f"Join the {config.site_name} Discord",
            "url": config.discord_invite_url,
        })
    fields.append({"label": "Date", "value": booking.display_date or "-"})
    fields.append({"label": "Your Time", "value": your_time})
    return fields + _shared_fields(booking) + _money_fields(booking, include_totals=False)


def owner_fields(booking: Booking, utc_start: datetime) -> list[dict]:
    """Owner copy: host slot first, then the client's view of it."""
    fields = [
        {"label": "Date", "value": booking.host_date},
        {"label": "Host Time", "value": f"{booking.host_time} ({booking.host_time_zone or 'host'})"},
        {"label": "Client Date", "value": booking.display_date or "-"},
        {"label": "Client Time", "value": f"{booking.display_time or '-'} ({booking.local_time_zone or 'client'})"},
        {"label": "Start (UTC)", "value": format_utc(utc_start)},
    ]
    return fields + _shared_fields(booking) + _money_fields(booking, include_totals=True)
