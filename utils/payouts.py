"""
Payout sync: recompute a referral's earned/paid/owed totals from its captured
bookings and payment logs, and persist them on the referral row.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import PayoutConfig, logger
from core.errors import InvalidRequest, NotFound
from models.booking import Booking, EARNING_STATUSES
from models.referral import PaymentCategory, Referral, ReferralPaymentLog
from utils.ledger import VERTEX, XOC, build_balance, compute_earnings, round2, sum_payments, to_number
from utils.timezones import parse_utc


@dataclass
class Ledger:
    earnings: dict
    payments: dict
    remaining: dict
    logs: dict

    @property
    def package_breakdown(self) -> list[dict]:
        return [{"title": title, "amount": amount} for title, amount in self.earnings.get("byPackage", {}).items()]

    def as_response(self, referral: Referral) -> dict:
        return {
            "ok": True,
            "referral": referral.to_public_dict(),
            "earnings": self.earnings,
            "packageBreakdown": self.package_breakdown,
            "payments": self.payments,
            "remaining": self.remaining,
            "logs": self.logs,
        }


class PayoutSyncService:
    def __init__(self, db: Session, config: PayoutConfig):
        self.db = db
        self.config = config

    def get_referral(self, referral_id: Optional[str]) -> Referral:
        if not referral_id:
            raise InvalidRequest("Missing referral creator id")
        referral = self.db.query(Referral).filter(Referral.id == referral_id).first()
        if referral is None:
            raise NotFound("Referral not found")
        return referral

    def bookings_for(self, referral: Referral) -> list[Booking]:
        """Captured or completed bookings attributed by id or by code."""
        slug = (referral.slug or "").lower()
        attributed = [Booking.referral_id == referral.id]
        if slug:
            attributed.append(func.lower(Booking.referral_code) == slug)
        return (
            self.db.query(Booking)
            .filter(Booking.status.in_(EARNING_STATUSES))
            .filter(or_(*attributed))
            .all()
        )

    def payment_logs(self, referral: Referral) -> dict:
        rows = (
            self.db.query(ReferralPaymentLog)
            .filter(ReferralPaymentLog.referral_id == referral.id)
            .order_by(ReferralPaymentLog.paid_on, ReferralPaymentLog.id)
            .all()
        )
        logs = {XOC: [], VERTEX: []}
        for row in rows:
            logs.setdefault(row.category, []).append(row)
        return logs

    def compute(self, referral: Referral) -> Ledger:
        earnings = compute_earnings(self.bookings_for(referral))
        logs = self.payment_logs(referral)
        balance = build_balance(earnings, sum_payments(logs[XOC]), sum_payments(logs[VERTEX]))
        return Ledger(
            earnings=earnings,
            payments=balance["payments"],
            remaining=balance["remaining"],
            logs={category: [row.to_dict() for row in rows] for category, rows in logs.items()},
        )

    @staticmethod
    def changed(referral: Referral, ledger: Ledger) -> bool:
        current = (referral.earned_total, referral.paid_total, referral.owed_total)
        fresh = (ledger.earnings["total"], ledger.payments["total"], ledger.remaining["total"])
        return any(round2(to_number(a)) != b for a, b in zip(current, fresh))

    @staticmethod
    def apply(referral: Referral, ledger: Ledger) -> None:
        referral.earned_xoc = ledger.earnings[XOC]
        referral.earned_vertex = ledger.earnings[VERTEX]
        referral.earned_total = ledger.earnings["total"]
        referral.paid_xoc = ledger.payments[XOC]
        referral.paid_vertex = ledger.payments[VERTEX]
        referral.paid_total = ledger.payments["total"]
        referral.owed_xoc = ledger.remaining[XOC]
        referral.owed_vertex = ledger.remaining[VERTEX]
        referral.owed_total = ledger.remaining["total"]

    def sync_referral(self, referral_id: str) -> tuple[Referral, Ledger]:
        referral = self.get_referral(referral_id)
        ledger = self.compute(referral)
        self.apply(referral, ledger)
        self.db.commit()
        logger.info(f"[payouts.sync] referral={referral.id} earned={ledger.earnings['total']} owed={ledger.remaining['total']}")
        return referral, ledger

    def read_payouts(self, referral_id: str) -> dict:
        """Payout view plus a best-effort write-back of the totals."""
        referral = self.get_referral(referral_id)
        ledger = self.compute(referral)
        sync = {"attempted": False, "success": False, "error": ""}
        if self.config.auto_sync:
            sync["attempted"] = True
            try:
                self.apply(referral, ledger)
                self.db.commit()
                sync["success"] = True
            except SQLAlchemyError as ex:
                self.db.rollback()
                logger.warning(f"[payouts.read] auto-sync failed referral={referral_id}: {ex}")
                sync["error"] = str(ex) or "sync failed"
        response = ledger.as_response(referral)
        response["sync"] = sync
        return response

    def sync_all(self) -> dict:
        """Batch job: recompute every referral, writing only the ones whose totals moved."""
        summary = {"total": 0, "updated": 0, "skipped": 0, "failed": 0, "errors": []}
        referral_ids = [row.id for row in self.db.query(Referral.id).order_by(Referral.created_at).all()]
        for referral_id in referral_ids:
            summary["total"] += 1
            try:
                referral = self.get_referral(referral_id)
                ledger = self.compute(referral)
                if not self.changed(referral, ledger):
                    summary["skipped"] += 1
                    continue
                self.apply(referral, ledger)
                self.db.commit()
                summary["updated"] += 1
            except (SQLAlchemyError, NotFound) as ex:
                self.db.rollback()
                summary["failed"] += 1
                summary["errors"].append({"referralId": referral_id, "error": str(ex)})
                logger.warning(f"[payouts.sync_all] referral={referral_id} failed: {ex}")
        logger.info(
            f"[payouts.sync_all] total={summary['total']} updated={summary['updated']} "
            f"skipped={summary['skipped']} failed={summary['failed']}"
        )
        return summary

    def record_payment(
        self,
        referral_id: Optional[str],
        package_type: Optional[str],
        amount,
        paid_on=None,
        note: Optional[str] = None,
        entry_id: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> tuple[Referral, Ledger]:
        """Upsert one payment log entry by key, then recompute and persist the totals."""
        if not referral_id:
            raise InvalidRequest("Missing referral creator id")
        if package_type not in PaymentCategory.ALL:
            raise InvalidRequest('packageType must be "xoc" or "vertex"')
        numeric_amount = to_number(amount)
        if numeric_amount <= 0:
            raise InvalidRequest("Amount must be a positive number")
        if paid_on:
            payment_date = parse_utc(paid_on)
            if payment_date is None:
                raise InvalidRequest("Invalid payment date supplied")
        else:
            payment_date = datetime.now(timezone.utc)

        referral = self.get_referral(referral_id)
        key = str(entry_id or "").strip() or uuid.uuid4().hex

        entry = (
            self.db.query(ReferralPaymentLog)
            .filter(ReferralPaymentLog.referral_id == referral.id, ReferralPaymentLog.entry_key == key)
            .first()
        )
        if entry is None:
            entry = ReferralPaymentLog(referral_id=referral.id, entry_key=key)
            self.db.add(entry)
        entry.category = package_type
        entry.amount = round2(numeric_amount)
        entry.paid_on = payment_date
        if note:
            entry.note = str(note)
        self.db.flush()

        ledger = self.compute(referral)
        self.apply(referral, ledger)
        if isinstance(internal_notes, str):
            referral.notes = internal_notes
        self.db.commit()
        logger.info(f"[payouts.record] referral={referral.id} {package_type} amount={entry.amount} key={key}")
        return referral, ledger
