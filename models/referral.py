"""
Referral models
- referrals: affiliate accounts plus their derived earnings/paid/owed totals
- referral_payment_logs: payouts made to a referral, one row per log entry
"""
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.sql import func

from core.database import Base
from models.booking import _new_id, _iso


class PaymentCategory:
    XOC = "xoc"
    VERTEX = "vertex"

    ALL = (XOC, VERTEX)


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(String(64), primary_key=True, default=_new_id)

    # Identity
    name = Column(String(255), nullable=False)
    slug = Column(String(64), unique=True, index=True, nullable=False)
    creator_email = Column(String(255), unique=True, index=True, nullable=True)
    password_hash = Column(String(255), nullable=True)
    paypal_email = Column(String(255), nullable=True)
    contact_discord = Column(String(255), nullable=True)
    contact_telegram = Column(String(255), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    # Commission / discount split the creator controls
    max_commission_percent = Column(Float, default=15.0)
    current_commission_percent = Column(Float, default=10.0)
    current_discount_percent = Column(Float, default=0.0)
    bypass_unlock = Column(Boolean, default=False)
    successful_referrals = Column(Integer, nullable=False, default=0)

    # Derived ledger totals, recomputed from bookings + payment logs
    earned_xoc = Column(Float, default=0.0)
    earned_vertex = Column(Float, default=0.0)
    earned_total = Column(Float, default=0.0)
    paid_xoc = Column(Float, default=0.0)
    paid_vertex = Column(Float, default=0.0)
    paid_total = Column(Float, default=0.0)
    owed_xoc = Column(Float, default=0.0)
    owed_vertex = Column(Float, default=0.0)
    owed_total = Column(Float, default=0.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_public_dict(self):
        return {
            "_id": self.id,
            "name": self.name,
            "slug": self.slug,
            "paypalEmail": self.paypal_email,
            "contactDiscord": self.contact_discord or "",
            "contactTelegram": self.contact_telegram or "",
            "contactPhone": self.contact_phone or "",
        }

    def to_dashboard_dict(self):
        """Creator dashboard view: identity plus the split settings they can edit."""
        return {
            "_id": self.id,
            "name": self.name,
            "slug": self.slug,
            "maxCommissionPercent": self.max_commission_percent,
            "currentCommissionPercent": self.current_commission_percent,
            "currentDiscountPercent": self.current_discount_percent,
            "paypalEmail": self.paypal_email,
        }


class ReferralPaymentLog(Base):
    __tablename__ = "referral_payment_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referral_id = Column(String(64), ForeignKey("referrals.id", ondelete="CASCADE"), index=True, nullable=False)
    category = Column(String(16), nullable=False)  # xoc | vertex
    # Stable key used for idempotent upserts from the admin dashboard
    entry_key = Column(String(64), nullable=False)
    amount = Column(Float, nullable=False)
    paid_on = Column(DateTime(timezone=True), nullable=False)
    note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("uq_referral_payment_logs_key", "referral_id", "entry_key", unique=True),
    )

    def to_dict(self):
        entry = {
            "_key": self.entry_key,
            "category": self.category,
            "amount": self.amount,
            "paidOn": _iso(self.paid_on),
        }
        if self.note:
            entry["note"] = self.note
        return entry
