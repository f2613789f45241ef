"""
Referral accounts: code lookup, commission/discount split and credentials.
"""
import re
from typing import Optional

import bcrypt
from sqlalchemy import func
from sqlalchemy.orm import Session

from models.referral import Referral

# A referral earns its own split after this many captured bookings
UNLOCK_THRESHOLD = 5
DEFAULT_COMMISSION_PERCENT = 10.0
DEFAULT_DISCOUNT_PERCENT = 0.0

_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{1,63}$")


def normalize_slug(code: Optional[str]) -> str:
    return (code or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.fullmatch(email or ""))


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug or ""))


def find_referral_by_code(db: Session, code: Optional[str]) -> Optional[Referral]:
    slug = normalize_slug(code)
    if not slug:
        return None
    return db.query(Referral).filter(func.lower(Referral.slug) == slug).first()


def is_unlocked(referral: Referral) -> bool:
    return bool(referral.bypass_unlock) or (referral.successful_referrals or 0) >= UNLOCK_THRESHOLD


def split_for(referral: Referral) -> tuple[float, float]:
    """(commission %, discount %) a booking with this referral gets by default."""
    if not is_unlocked(referral):
        return DEFAULT_COMMISSION_PERCENT, DEFAULT_DISCOUNT_PERCENT
    commission = referral.current_commission_percent
    discount = referral.current_discount_percent
    return (
        DEFAULT_COMMISSION_PERCENT if commission is None else float(commission),
        DEFAULT_DISCOUNT_PERCENT if discount is None else float(discount),
    )


def hash_password(password: str) -> str:
    return bcrypt.hashpw((password or "").encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw((password or "").encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False
