"""
Slot holds: time-boxed claims on a (host date, host time) slot while a client pays.

Expiry is lazy. A hold whose expires_at has passed is ignored by every lookup
and purged right before the slot is claimed again. The UNIQUE index on
(host_date, host_time) turns the final insert into a conditional write, so two
concurrent reservations cannot both succeed.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import BookingConfig, logger
from core.errors import InvalidRequest, SlotConflict
from models.booking import Booking, SlotHold
from utils.timezones import host_slot, parse_utc

MSG_SLOT_BOOKED = "This slot is already booked."
MSG_SLOT_HELD = "This slot is currently reserved by someone else."


class SlotHoldManager:
    def __init__(self, db: Session, config: BookingConfig, now: Optional[datetime] = None):
        self.db = db
        self.config = config
        self._now = now

    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    # Lookups

    def booking_exists(self, host_date: str, host_time: str) -> bool:
        """A confirmed, non-upgrade booking occupies the slot."""
        return (
            self.db.query(Booking.id)
            .filter(
                Booking.host_date == host_date,
                Booking.host_time == host_time,
                Booking.original_order_id.is_(None),
            )
            .first()
            is not None
        )

    def get_hold(self, hold_id: Optional[str]) -> Optional[SlotHold]:
        if not hold_id:
            return None
        return self.db.query(SlotHold).filter(SlotHold.id == hold_id).first()

    def find_active_hold(self, host_date: str, host_time: str, exclude_id: Optional[str] = None) -> Optional[SlotHold]:
        q = self.db.query(SlotHold).filter(
            SlotHold.host_date == host_date,
            SlotHold.host_time == host_time,
            SlotHold.expires_at > self.now(),
        )
        if exclude_id:
            q = q.filter(SlotHold.id != exclude_id)
        return q.first()

    # Mutations

    def reserve(self, start_time_utc, package_title: str = "", previous_hold_id: Optional[str] = None) -> SlotHold:
        """
        Claim the slot starting at `start_time_utc` for hold_ttl_minutes.
        The caller's own previous hold does not block the claim and is released first.
        """
        if not start_time_utc:
            raise InvalidRequest("Missing startTimeUTC.")
        utc_start = parse_utc(start_time_utc)
        if utc_start is None:
            raise InvalidRequest("Invalid startTimeUTC.")
        host_date, host_time = host_slot(utc_start, self.config.host_timezone)
        if not host_date or not host_time:
            raise InvalidRequest("Invalid owner date/time.")

        if self.booking_exists(host_date, host_time):
            logger.info(f"[holds.reserve] booked slot={host_date} {host_time}")
            raise SlotConflict(MSG_SLOT_BOOKED)

        if self.find_active_hold(host_date, host_time, exclude_id=previous_hold_id):
            logger.info(f"[holds.reserve] held slot={host_date} {host_time}")
            raise SlotConflict(MSG_SLOT_HELD)

        if previous_hold_id:
            self._release_previous(previous_hold_id)

        now = self.now()
        self.db.query(SlotHold).filter(
            SlotHold.host_date == host_date,
            SlotHold.host_time == host_time,
            SlotHold.expires_at <= now,
        ).delete(synchronize_session=False)

        hold = SlotHold(
            host_date=host_date,
            host_time=host_time,
            start_time_utc=utc_start,
            package_title=package_title or "",
            expires_at=now + timedelta(minutes=self.config.hold_ttl_minutes),
        )
        self.db.add(hold)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request claimed the slot between our checks and the insert
            self.db.rollback()
            logger.info(f"[holds.reserve] lost race slot={host_date} {host_time}")
            raise SlotConflict(MSG_SLOT_HELD)
        self.db.refresh(hold)
        logger.info(f"[holds.reserve] hold={hold.id} slot={host_date} {host_time}")
        return hold

    def _release_previous(self, hold_id: str) -> None:
        """Best-effort; a failure here never blocks the new reservation."""
        try:
            self.db.query(SlotHold).filter(SlotHold.id == hold_id).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as ex:
            self.db.rollback()
            logger.warning(f"[holds.reserve] could not release previous hold={hold_id}: {ex}")

    def release(self, hold_id: str) -> bool:
        """Idempotent delete. Returns whether a row was removed."""
        deleted = self.db.query(SlotHold).filter(SlotHold.id == hold_id).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info(f"[holds.release] hold={hold_id}")
        return bool(deleted)

    def expire(self, hold: SlotHold) -> None:
        self.db.delete(hold)
        self.db.commit()

    def delete_holds_for_slot(self, host_date: str, host_time: str) -> int:
        """Drop every hold on the slot regardless of owner. Caller commits."""
        return self.db.query(SlotHold).filter(
            SlotHold.host_date == host_date,
            SlotHold.host_time == host_time,
        ).delete(synchronize_session=False)
