"""
Slot hold endpoints
Reserve a calendar slot while the client pays, or give it back
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.config import BookingConfig, get_booking_config, logger
from core.database import get_db
from core.errors import BookingError, InvalidRequest, error_response
from utils.http import read_json
from utils.slot_holds import SlotHoldManager

router = APIRouter(prefix="/api", tags=["slot-holds"])


@router.post("/holdSlot")
async def hold_slot(
    request: Request,
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_booking_config),
):
    try:
        payload = await read_json(request)
        hold = SlotHoldManager(db, config).reserve(
            payload.get("startTimeUTC"),
            package_title=payload.get("packageTitle") or "",
            previous_hold_id=payload.get("previousHoldId") or None,
        )
        return {"ok": True, "holdId": hold.id, "expiresAt": hold.to_dict()["expiresAt"]}
    except BookingError as ex:
        return error_response(ex, key="message")
    except Exception as ex:
        logger.exception(f"[holds.reserve] failed: {ex}")
        return JSONResponse(
            {"ok": False, "message": "Failed to reserve this slot. Please try again."},
            status_code=500,
        )


@router.post("/releaseHold")
async def release_hold(
    request: Request,
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_booking_config),
):
    try:
        payload = await read_json(request)
        hold_id = str(payload.get("holdId") or "").strip()
        if not hold_id:
            raise InvalidRequest("Missing holdId.")
        SlotHoldManager(db, config).release(hold_id)
        return {"ok": True}
    except BookingError as ex:
        return error_response(ex, key="message")
    except Exception as ex:
        logger.exception(f"[holds.release] failed: {ex}")
        return JSONResponse({"ok": False, "message": "Failed to release hold."}, status_code=500)
