"""
Error taxonomy for the booking, hold and payout flows.
Each error knows its HTTP status so routes stay thin.
"""
from __future__ import annotations

from fastapi.responses import JSONResponse

from core.config import logger

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_FORBIDDEN = 403
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500

MSG_SERVER_ERROR = "Server error"


class BookingError(Exception):
    status_code = STATUS_INTERNAL_ERROR
    default_message = MSG_SERVER_ERROR

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(BookingError):
    status_code = STATUS_BAD_REQUEST
    default_message = "Invalid request"


class PaymentProofMissing(BookingError):
    status_code = STATUS_BAD_REQUEST
    default_message = "Missing payment confirmation for a captured booking."


class CouponInvalid(InvalidRequest):
    default_message = "Coupon not found or invalid."


class UnsupportedProvider(InvalidRequest):
    default_message = "Unsupported payment provider."


class SlotConflict(BookingError):
    status_code = STATUS_CONFLICT
    default_message = "This slot is already booked. Please choose another time."


class HoldExpired(BookingError):
    status_code = STATUS_CONFLICT
    default_message = "Your slot reservation has expired. Please rebook."


class DuplicatePayment(BookingError):
    status_code = STATUS_CONFLICT
    default_message = "This payment has already been used for another booking."


class NotFound(BookingError):
    status_code = STATUS_NOT_FOUND
    default_message = "Not found"


class Unauthorized(BookingError):
    status_code = STATUS_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(BookingError):
    status_code = STATUS_FORBIDDEN
    default_message = "Forbidden"


class ServerError(BookingError):
    pass


def error_response(exc: Exception, key: str = "error") -> JSONResponse:
    """
    Map an exception into a JSON error body.
    Known errors keep their message and status; anything else becomes a bare 500.
    """
    if isinstance(exc, BookingError):
        return JSONResponse({"ok": False, key: exc.message}, status_code=exc.status_code)
    logger.error(f"[errors] unexpected {type(exc).__name__}: {exc}")
    return JSONResponse({"ok": False, key: MSG_SERVER_ERROR}, status_code=STATUS_INTERNAL_ERROR)
