"""
Order follow-ups after checkout: upgrade quotes for Performance Vertex Overhaul
bookings and status changes pushed by the payment pages.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import PayoutConfig, logger
from core.errors import InvalidRequest, NotFound, ServerError
from models.booking import Booking, BookingStatus, Package
from models.referral import Referral
from utils.ledger import parse_price, round2
from utils.payouts import PayoutSyncService
from utils.post_commit import PostCommitTasks
from utils.referrals import find_referral_by_code

XOC_PACKAGE_TITLE = "XOC / Extreme Overclocking"
UPGRADABLE_MARKERS = ("performance vertex overhaul", "pvo")
STATUSES = tuple(s.value for s in BookingStatus)


@dataclass
class StatusUpdate:
    booking: Booking
    synced: Optional[str] = None
    diagnostics: list = field(default_factory=list)


class OrderService:
    def __init__(self, db: Session, payout_config: PayoutConfig):
        self.db = db
        self.payout_config = payout_config

    def find_booking(self, booking_id: str) -> Optional[Booking]:
        """Clients quote either the booking id or the order id shown in their email."""
        return (
            self.db.query(Booking)
            .filter(or_(Booking.id == booking_id, Booking.order_id == booking_id))
            .first()
        )

    def upgrade_quote(self, booking_id: Optional[str]) -> dict:
        booking_id = (booking_id or "").strip()
        if not booking_id:
            raise InvalidRequest("Missing Order ID (bookingId).")
        booking = self.find_booking(booking_id)
        if booking is None:
            raise NotFound("No booking found with that Order ID.")
        if booking.status != BookingStatus.CAPTURED.value:
            raise InvalidRequest("This booking is not marked as paid yet. Only paid PVO bookings can be upgraded.")
        title = (booking.package_title or "").lower()
        if not any(marker in title for marker in UPGRADABLE_MARKERS):
            raise InvalidRequest(
                "This Order ID is not a Performance Vertex Overhaul booking, so it can't be upgraded with this link."
            )

        xoc = self.db.query(Package).filter(Package.title == XOC_PACKAGE_TITLE).first()
        if xoc is None:
            raise ServerError(f"{XOC_PACKAGE_TITLE} package not found. Please contact support.")
        xoc_price = parse_price(xoc.price)

        # A stored net amount (0 for free bookings) wins over the display price
        if booking.net_amount is not None:
            original_paid = float(booking.net_amount)
        else:
            original_paid = parse_price(booking.package_price)
        upgrade_price = max(0.0, round2(xoc_price - original_paid))

        logger.info(f"[orders.upgrade] booking={booking.id} paid={original_paid} upgrade={upgrade_price}")
        return {
            "ok": True,
            "booking": booking.to_dict(),
            "xoc": {"title": xoc.title, "priceString": xoc.price or "", "price": xoc_price},
            "originalPaid": original_paid,
            "upgradePrice": upgrade_price,
        }

    def _referral_for(self, booking: Booking) -> Optional[Referral]:
        if booking.referral_id:
            referral = self.db.query(Referral).filter(Referral.id == booking.referral_id).first()
            if referral is not None:
                return referral
        return find_referral_by_code(self.db, booking.referral_code)

    def update_status(self, booking_id: Optional[str], status: Optional[str], payer_email: Optional[str] = None) -> StatusUpdate:
        """
        Set a booking's payment status. The status decides whether the booking
        counts towards referral earnings, so the referral's totals are re-synced
        afterwards on a best-effort basis.
        """
        booking_id = (booking_id or "").strip()
        status = (status or "").strip().lower()
        if not booking_id:
            raise InvalidRequest("Missing bookingId")
        if status not in STATUSES:
            raise InvalidRequest(f"Invalid status: {status or '(empty)'}")
        booking = self.find_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found")

        previous = booking.status
        booking.status = status
        payer_email = (payer_email or "").strip()
        if payer_email:
            booking.payer_email = payer_email
        try:
            self.db.commit()
        except SQLAlchemyError as ex:
            self.db.rollback()
            logger.error(f"[orders.status] booking={booking_id} update failed: {ex}")
            raise ServerError("Failed to update booking status")
        logger.info(f"[orders.status] booking={booking.id} {previous} -> {status}")

        result = StatusUpdate(booking=booking)
        referral = self._referral_for(booking)
        if referral is not None and self.payout_config.auto_sync:
            tasks = PostCommitTasks(self.db, "orders.status")
            if tasks.run("sync_referral", lambda: PayoutSyncService(self.db, self.payout_config).sync_referral(referral.id)):
                result.synced = referral.id
            result.diagnostics = tasks.diagnostics
        return result
