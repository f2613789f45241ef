"""
Referral payout endpoints
Read, force-sync, batch-sync and record payouts for referral accounts
"""
import json

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from core.auth import check_admin_key, check_cron_authorization, verify_webhook_signature
from core.config import PayoutConfig, get_payout_config, logger
from core.database import get_db
from core.errors import BookingError, Forbidden, InvalidRequest, Unauthorized, error_response
from utils.http import read_json
from utils.payouts import PayoutSyncService

router = APIRouter(prefix="/api/ref", tags=["payouts"])

SIGNATURE_HEADERS = ("x-webhook-signature", "sanity-webhook-signature")


@router.get("/payouts")
async def get_payouts(
    id: str = Query(""),
    db: Session = Depends(get_db),
    config: PayoutConfig = Depends(get_payout_config),
):
    try:
        return PayoutSyncService(db, config).read_payouts(id.strip())
    except BookingError as ex:
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[payouts.read] failed: {ex}")
        return error_response(ex)


@router.post("/syncPayouts")
async def sync_payouts(
    request: Request,
    db: Session = Depends(get_db),
    config: PayoutConfig = Depends(get_payout_config),
):
    try:
        payload = await read_json(request)
        if not check_admin_key(config.admin_key, payload.get("adminKey")):
            raise Forbidden("Invalid admin key")
        referral, ledger = PayoutSyncService(db, config).sync_referral(str(payload.get("referralId") or "").strip())
        response = ledger.as_response(referral)
        response["synced"] = referral.id
        return response
    except BookingError as ex:
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[payouts.sync] failed: {ex}")
        return error_response(ex)


@router.get("/cronSyncAll")
async def cron_sync_all(
    request: Request,
    db: Session = Depends(get_db),
    config: PayoutConfig = Depends(get_payout_config),
):
    if not check_cron_authorization(request, config.cron_secret):
        return error_response(Unauthorized())
    try:
        summary = PayoutSyncService(db, config).sync_all()
        return {"ok": True, **summary}
    except Exception as ex:
        logger.exception(f"[payouts.cron] failed: {ex}")
        return error_response(ex)


@router.post("/webhookSync")
async def webhook_sync(
    request: Request,
    db: Session = Depends(get_db),
    config: PayoutConfig = Depends(get_payout_config),
):
    raw = await request.body()
    signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), "")
    if not verify_webhook_signature(config.webhook_secret, raw, signature):
        logger.warning("[payouts.webhook] invalid signature")
        return error_response(Unauthorized("Invalid signature"))

    try:
        try:
            payload = json.loads(raw or b"{}")
        except ValueError:
            raise InvalidRequest("Invalid JSON body")
        if not isinstance(payload, dict):
            raise InvalidRequest("JSON body must be an object")
        referral_id = str(payload.get("_id") or payload.get("referralId") or "").strip()
        if not referral_id:
            raise InvalidRequest("No _id in webhook payload")
        referral, ledger = PayoutSyncService(db, config).sync_referral(referral_id)
        return {
            "ok": True,
            "synced": referral.id,
            "earnings": ledger.earnings,
            "payments": ledger.payments,
            "remaining": ledger.remaining,
        }
    except BookingError as ex:
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[payouts.webhook] failed: {ex}")
        return error_response(ex)


@router.post("/updatePayments")
async def update_payments(
    request: Request,
    db: Session = Depends(get_db),
    config: PayoutConfig = Depends(get_payout_config),
):
    try:
        payload = await read_json(request)
        if not check_admin_key(config.admin_key, payload.get("adminKey")):
            raise Forbidden("Invalid admin key")
        referral, ledger = PayoutSyncService(db, config).record_payment(
            str(payload.get("referralId") or "").strip(),
            payload.get("packageType"),
            payload.get("amount"),
            paid_on=payload.get("paidOn"),
            note=payload.get("note"),
            entry_id=payload.get("entryId"),
            internal_notes=payload.get("internalNotes"),
        )
        return ledger.as_response(referral)
    except BookingError as ex:
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[payouts.record] failed: {ex}")
        return error_response(ex)
