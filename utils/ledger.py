"""
Referral ledger math: earnings from bookings, payout sums and balances.
Pure functions, no I/O.
"""
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

XOC = "xoc"
VERTEX = "vertex"

_UPGRADE_SUFFIX = re.compile(r"\s*\(upgrade\)\s*$", re.IGNORECASE)
_XOC_KEYWORDS = ("xoc", "extreme overclock")
_VERTEX_KEYWORDS = ("vertex", "performance vertex", "pvo")


def round2(value: float) -> float:
    """Round half away from zero on the exact binary value, like JS toFixed(2)."""
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_number(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def _get(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def normalize_package_title(title: Any) -> str:
    raw = str(title or "").strip()
    if not raw:
        return "Unknown"
    return _UPGRADE_SUFFIX.sub("", raw).strip()


def classify_package(title: Any) -> str:
    """Map a package title onto its payout category; anything unknown counts as vertex."""
    normalized = normalize_package_title(title).lower()
    if any(k in normalized for k in _XOC_KEYWORDS):
        return XOC
    if any(k in normalized for k in _VERTEX_KEYWORDS):
        return VERTEX
    return VERTEX


def booking_commission(booking: Any) -> float:
    """Stored commission wins; otherwise derive it from the net (or gross) amount."""
    commission_amount = to_number(_get(booking, "commission_amount"))
    if commission_amount:
        return commission_amount
    commission_percent = to_number(_get(booking, "commission_percent"))
    base = to_number(_get(booking, "net_amount")) or to_number(_get(booking, "gross_amount"))
    return round2(base * commission_percent / 100)


def compute_earnings(bookings: Iterable[Any]) -> dict:
    """
    Sum commissions per category and per package.
    Bookings may be ORM rows or dicts with snake_case keys.
    Rounding happens once, on the accumulated totals; fsum keeps the
    result independent of booking order.
    """
    per_category: dict[str, list[float]] = {XOC: [], VERTEX: []}
    by_package: dict[str, list[float]] = {}

    for booking in bookings or []:
        title = normalize_package_title(_get(booking, "package_title"))
        earned = booking_commission(booking)
        per_category[classify_package(title)].append(earned)
        by_package.setdefault(title, []).append(earned)

    return {
        XOC: round2(math.fsum(per_category[XOC])),
        VERTEX: round2(math.fsum(per_category[VERTEX])),
        "total": round2(math.fsum(per_category[XOC] + per_category[VERTEX])),
        "byPackage": {title: round2(math.fsum(amounts)) for title, amounts in sorted(by_package.items())},
    }


def sum_payments(entries: Iterable[Any]) -> float:
    return round2(sum(to_number(_get(entry, "amount")) for entry in entries or []))


def build_balance(earnings: Mapping[str, Any], paid_xoc: float, paid_vertex: float) -> dict:
    remaining_xoc = round2(to_number(earnings.get(XOC)) - paid_xoc)
    remaining_vertex = round2(to_number(earnings.get(VERTEX)) - paid_vertex)

    return {
        "payments": {
            XOC: paid_xoc,
            VERTEX: paid_vertex,
            "total": round2(paid_xoc + paid_vertex),
        },
        "remaining": {
            XOC: remaining_xoc,
            VERTEX: remaining_vertex,
            "total": round2(remaining_xoc + remaining_vertex),
        },
    }


def parse_price(price: Any) -> float:
    """Pull the numeric part out of a display price such as "$84.99"."""
    digits = re.sub(r"[^0-9.]", "", str(price or ""))
    try:
        return float(digits) if digits else 0.0
    except ValueError:
        return 0.0
