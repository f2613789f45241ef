"""
Razorpay checkout: order creation and client-side signature verification
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from core.config import RazorpayConfig, get_razorpay_config, logger
from core.errors import BookingError, error_response
from utils.http import read_json
from utils.ledger import to_number
from utils.razorpay_gateway import RazorpayGateway

router = APIRouter(prefix="/api/razorpay", tags=["razorpay"])


@router.post("/createOrder")
async def create_order(request: Request, config: RazorpayConfig = Depends(get_razorpay_config)):
    if not config.configured:
        logger.error("[razorpay.create_order] keys missing")
        return JSONResponse({"ok": False, "message": "Razorpay keys are missing on the server"}, status_code=500)

    try:
        payload = await read_json(request)
    except BookingError as ex:
        return error_response(ex, key="message")

    amount = to_number(payload.get("amount"))
    currency = str(payload.get("currency") or "USD").strip().upper()
    if amount <= 0 or not currency:
        return JSONResponse({"ok": False, "message": "Missing amount or currency"}, status_code=400)

    notes = payload.get("notes")
    try:
        order = RazorpayGateway(config).create_order(amount, currency, notes if isinstance(notes, dict) else {})
        return {"ok": True, **order}
    except Exception as ex:
        logger.exception(f"[razorpay.create_order] failed: {ex}")
        return JSONResponse({"ok": False, "message": "Failed to create Razorpay order"}, status_code=500)


@router.post("/verify")
async def verify_payment(request: Request, config: RazorpayConfig = Depends(get_razorpay_config)):
    try:
        payload = await read_json(request)
    except BookingError as ex:
        return error_response(ex, key="message")

    order_id = str(payload.get("razorpay_order_id") or "").strip()
    payment_id = str(payload.get("razorpay_payment_id") or "").strip()
    signature = str(payload.get("razorpay_signature") or "").strip()
    if not order_id or not payment_id or not signature:
        return JSONResponse({"ok": False, "message": "Missing payment verification details"}, status_code=400)

    if not config.key_secret:
        logger.error("[razorpay.verify] key secret missing")
        return JSONResponse({"ok": False, "message": "Server error verifying payment"}, status_code=500)

    if not RazorpayGateway(config).verify_signature(order_id, payment_id, signature):
        return JSONResponse({"ok": False, "message": "Invalid signature"}, status_code=400)
    return {"ok": True}
