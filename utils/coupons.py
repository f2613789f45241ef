from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.errors import CouponInvalid
from models.coupon import Coupon


def find_coupon(db: Session, code: Optional[str]) -> Optional[Coupon]:
    """Case-insensitive lookup by code."""
    normalized = (code or "").strip().lower()
    if not normalized:
        return None
    return db.query(Coupon).filter(func.lower(Coupon.code) == normalized).first()


def ensure_usable(coupon: Optional[Coupon], now: datetime) -> Coupon:
    """Raise CouponInvalid unless the coupon can be applied right now."""
    if coupon is None:
        raise CouponInvalid()
    if not coupon.is_active:
        raise CouponInvalid("This coupon is not active.")
    window_error = coupon.window_error(now)
    if window_error:
        raise CouponInvalid(window_error)
    if coupon.is_exhausted:
        raise CouponInvalid("This coupon has reached its usage limit.")
    return coupon
