from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Text
from sqlalchemy.sql import func

from core.database import Base
from models.booking import _new_id, as_utc


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=True)
    # Matched case-insensitively
    code = Column(String(64), nullable=False, index=True)
    discount_percent = Column(Float, nullable=False, default=0.0)

    is_active = Column(Boolean, default=True)
    can_combine_with_referral = Column(Boolean, default=False)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)

    # 0 / NULL means unlimited
    max_uses = Column(Integer, nullable=True)
    times_used = Column(Integer, nullable=False, default=0)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_exhausted(self) -> bool:
        return bool(self.max_uses and self.max_uses > 0 and (self.times_used or 0) >= self.max_uses)

    def window_error(self, now) -> str | None:
        valid_from = as_utc(self.valid_from)
        valid_to = as_utc(self.valid_to)
        if valid_from and valid_from > now:
            return "This coupon is not valid yet."
        if valid_to and valid_to < now:
            return "This coupon has expired."
        return None

    def to_public_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "code": self.code,
            "discountPercent": self.discount_percent,
            "canCombineWithReferral": bool(self.can_combine_with_referral),
        }
