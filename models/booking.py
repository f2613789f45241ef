"""
Booking Models
Calendar slot holds, confirmed bookings, bookable packages and the booking settings singleton
"""
from datetime import datetime, timezone
import uuid
import enum

from sqlalchemy import Column, String, Text, DateTime, Integer, Float, Boolean, Index, text
from sqlalchemy.sql import func

from core.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentProvider(str, enum.Enum):
    FREE = "free"
    PAYPAL = "paypal"
    RAZORPAY = "razorpay"


# Bookings that count towards referral earnings
EARNING_STATUSES = (BookingStatus.CAPTURED.value, BookingStatus.COMPLETED.value)


def _new_id() -> str:
    return uuid.uuid4().hex


def as_utc(value: datetime | None) -> datetime | None:
    """Some backends hand back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat().replace("+00:00", "Z") if value else None


class SlotHold(Base):
    """Temporary claim on a (host date, host time) slot while the client pays"""
    __tablename__ = "slot_holds"

    id = Column(String(64), primary_key=True, default=_new_id)

    host_date = Column(String(32), nullable=False)   # "Wed Jan 15 2025"
    host_time = Column(String(16), nullable=False)   # "1:29 PM"
    start_time_utc = Column(DateTime(timezone=True), nullable=True)
    package_title = Column(String(255), nullable=True)

    # After this instant the hold is ignored by every lookup
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        # One row per slot; expired rows are purged before a new insert
        Index("uq_slot_holds_slot", "host_date", "host_time", unique=True),
    )

    def is_active(self, now: datetime) -> bool:
        expires = as_utc(self.expires_at)
        return bool(expires and expires > now)

    def to_dict(self):
        return {
            "id": self.id,
            "hostDate": self.host_date,
            "hostTime": self.host_time,
            "startTimeUTC": _iso(self.start_time_utc),
            "packageTitle": self.package_title or "",
            "expiresAt": _iso(self.expires_at),
        }


class Booking(Base):
    """Durable record of a scheduled (or free) session"""
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=_new_id)
    order_id = Column(String(64), nullable=True, index=True)

    # Scheduling: host-local labels, UTC instant, client-local display labels
    host_date = Column(String(32), nullable=False, index=True)
    host_time = Column(String(16), nullable=False)
    host_time_zone = Column(String(64), nullable=True)
    start_time_utc = Column(DateTime(timezone=True), nullable=True)
    local_time_zone = Column(String(64), nullable=True)
    display_date = Column(String(64), nullable=True)
    display_time = Column(String(32), nullable=True)

    # Client details
    email = Column(String(255), nullable=True)
    discord = Column(String(255), nullable=True)
    specs = Column(Text, nullable=True)
    main_game = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)

    # Package
    package_title = Column(String(255), nullable=True)
    package_price = Column(String(64), nullable=True)

    # Payment
    payment_provider = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value, index=True)
    paypal_order_id = Column(String(128), nullable=True, index=True)
    payer_email = Column(String(255), nullable=True)
    razorpay_order_id = Column(String(128), nullable=True)
    razorpay_payment_id = Column(String(128), nullable=True, index=True)

    # Money
    gross_amount = Column(Float, default=0.0)
    discount_percent = Column(Float, default=0.0)
    discount_amount = Column(Float, default=0.0)
    net_amount = Column(Float, default=0.0)
    commission_percent = Column(Float, default=0.0)
    commission_amount = Column(Float, default=0.0)

    # Coupon snapshot
    coupon_code = Column(String(64), nullable=True)
    coupon_discount_percent = Column(Float, nullable=True)
    coupon_discount_amount = Column(Float, nullable=True)

    # Referral attribution
    referral_id = Column(String(64), nullable=True, index=True)
    referral_code = Column(String(255), nullable=True)

    # Upgrades modify an existing order instead of claiming a slot
    original_order_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index(
            "uq_bookings_slot",
            "host_date",
            "host_time",
            unique=True,
            postgresql_where=text("original_order_id IS NULL"),
            sqlite_where=text("original_order_id IS NULL"),
        ),
    )

    @property
    def is_upgrade(self) -> bool:
        return bool(self.original_order_id)

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "hostDate": self.host_date,
            "hostTime": self.host_time,
            "hostTimeZone": self.host_time_zone,
            "startTimeUTC": _iso(self.start_time_utc),
            "localTimeZone": self.local_time_zone,
            "displayDate": self.display_date,
            "displayTime": self.display_time,
            "email": self.email,
            "discord": self.discord,
            "packageTitle": self.package_title,
            "packagePrice": self.package_price,
            "paymentProvider": self.payment_provider,
            "status": self.status,
            "paypalOrderId": self.paypal_order_id,
            "razorpayOrderId": self.razorpay_order_id,
            "razorpayPaymentId": self.razorpay_payment_id,
            "grossAmount": self.gross_amount,
            "discountPercent": self.discount_percent,
            "discountAmount": self.discount_amount,
            "netAmount": self.net_amount,
            "commissionPercent": self.commission_percent,
            "commissionAmount": self.commission_amount,
            "couponCode": self.coupon_code,
            "referralId": self.referral_id,
            "referralCode": self.referral_code,
            "originalOrderId": self.original_order_id,
            "createdAt": _iso(self.created_at),
        }


class BookingSettings(Base):
    """Singleton settings row (owner notification address, booking window)"""
    __tablename__ = "booking_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_email = Column(String(255), nullable=True)
    max_days_ahead_booking = Column(Integer, nullable=True)
    open_hour = Column(Integer, nullable=True)
    close_hour = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Package(Base):
    """Bookable package as listed on the site; price is the display string ("$84.99")"""
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), unique=True, nullable=False)
    price = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True)
