"""
Booking Router
Converts a held slot plus payment proof into a confirmed booking,
quotes PVO upgrades and applies payment status changes
"""
from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from core.config import (
    BookingConfig,
    PayPalConfig,
    PayoutConfig,
    RazorpayConfig,
    get_booking_config,
    get_paypal_config,
    get_payout_config,
    get_razorpay_config,
    logger,
)
from core.database import get_db
from core.auth import check_admin_key
from core.errors import BookingError, Forbidden, InvalidRequest, ServerError, error_response
from utils.booking_flow import BookingRequest, BookingService
from utils.emailing import Notifier, get_notifier
from utils.http import read_json
from utils.orders import OrderService
from utils.paypal import PayPalClient
from utils.razorpay_gateway import RazorpayGateway

router = APIRouter(prefix="/api", tags=["booking"])


def _first_error(ex: ValidationError) -> str:
    errors = ex.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {where}: {first.get('msg', 'invalid value')}" if where else first.get("msg", "Invalid request")


@router.post("/ref/createBooking")
@router.post("/createBooking")
async def create_booking(
    request: Request,
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_booking_config),
    razorpay_config: RazorpayConfig = Depends(get_razorpay_config),
    paypal_config: PayPalConfig = Depends(get_paypal_config),
    notify: Notifier = Depends(get_notifier),
):
    try:
        payload = await read_json(request)
        try:
            data = BookingRequest.model_validate(payload)
        except ValidationError as ex:
            raise InvalidRequest(_first_error(ex))

        service = BookingService(
            db,
            config,
            notify,
            razorpay=RazorpayGateway(razorpay_config),
            paypal=PayPalClient(paypal_config),
        )
        result = service.create_booking(data)
        return {"bookingId": result.booking_id}
    except BookingError as ex:
        logger.info(f"[booking.create] rejected {type(ex).__name__}: {ex.message}")
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[booking.create] failed: {ex}")
        return error_response(ex)


@router.get("/ref/getUpgradeInfo")
async def get_upgrade_info(
    id: str = Query(""),
    db: Session = Depends(get_db),
    payout_config: PayoutConfig = Depends(get_payout_config),
):
    try:
        return OrderService(db, payout_config).upgrade_quote(id)
    except BookingError as ex:
        logger.info(f"[orders.upgrade] rejected {type(ex).__name__}: {ex.message}")
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[orders.upgrade] failed: {ex}")
        return error_response(ServerError("Server error while computing upgrade price."))


@router.post("/updateBookingStatus")
async def update_booking_status(
    request: Request,
    db: Session = Depends(get_db),
    payout_config: PayoutConfig = Depends(get_payout_config),
):
    try:
        payload = await read_json(request)
        if not check_admin_key(payout_config.admin_key, payload.get("adminKey")):
            raise Forbidden("Invalid admin key")
        result = OrderService(db, payout_config).update_status(
            payload.get("bookingId"),
            payload.get("status"),
            payload.get("payerEmail"),
        )
        return {
            "ok": True,
            "success": True,
            "bookingId": result.booking.id,
            "status": result.booking.status,
            "synced": result.synced,
        }
    except BookingError as ex:
        return error_response(ex)
    except Exception as ex:
        logger.exception(f"[orders.status] failed: {ex}")
        return error_response(ServerError("Failed to update booking status"))
