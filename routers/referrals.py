"""
Referral accounts and code validation
Self-registration, creator login, split updates and public code lookups
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from core.database import get_db
from core.errors import BookingError, InvalidRequest, NotFound, error_response
from models.referral import Referral
from utils.coupons import ensure_usable, find_coupon
from utils.http import read_json
from utils.ledger import to_number
from utils.referrals import (
    DEFAULT_COMMISSION_PERCENT,
    check_password,
    find_referral_by_code,
    hash_password,
    is_valid_email,
    is_valid_slug,
    normalize_slug,
    split_for,
)

router = APIRouter(prefix="/api/ref", tags=["referrals"])


@router.post("/register")
async def register(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await read_json(request)
    except BookingError as ex:
        return error_response(ex)

    name = str(payload.get("name") or "").strip()
    email = str(payload.get("email") or "").strip().lower()
    paypal_email = str(payload.get("paypalEmail") or "").strip().lower()
    slug = normalize_slug(payload.get("slug"))
    password = str(payload.get("password") or "")

    if not name or not email or not paypal_email or not slug or not password:
        return JSONResponse({"ok": False, "error": "All fields required"}, status_code=400)
    if not is_valid_email(email):
        return JSONResponse({"ok": False, "error": "Invalid login email address"}, status_code=400)
    if not is_valid_email(paypal_email):
        return JSONResponse({"ok": False, "error": "Invalid PayPal email address"}, status_code=400)
    if not is_valid_slug(slug):
        return JSONResponse({"ok": False, "error": "Referral code may only use letters, numbers, - and _"}, status_code=400)

    if db.query(Referral.id).filter(Referral.creator_email == email).first():
        return JSONResponse({"ok": False, "error": "Email already registered"}, status_code=409)
    if find_referral_by_code(db, slug):
        return JSONResponse({"ok": False, "error": "Referral code already taken"}, status_code=409)

    referral = Referral(
        name=name,
        slug=slug,
        creator_email=email,
        password_hash=hash_password(password),
        paypal_email=paypal_email,
        current_commission_percent=DEFAULT_COMMISSION_PERCENT,
        successful_referrals=0,
    )
    db.add(referral)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return JSONResponse({"ok": False, "error": "Referral code already taken"}, status_code=409)
    db.refresh(referral)
    logger.info(f"[referrals.register] referral={referral.id} slug={slug}")
    return JSONResponse({"ok": True, "referralId": referral.id}, status_code=201)


@router.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await read_json(request)
    except BookingError as ex:
        return error_response(ex)

    referral = find_referral_by_code(db, payload.get("code"))
    if referral is None:
        return JSONResponse({"ok": False}, status_code=404)
    if not check_password(str(payload.get("password") or ""), referral.password_hash):
        logger.info(f"[referrals.login] wrong password slug={referral.slug}")
        return JSONResponse({"ok": False}, status_code=401)
    return {"ok": True, "creatorId": referral.id, "name": referral.name, "code": referral.slug}


@router.get("/validateReferral")
async def validate_referral(code: str = Query(""), db: Session = Depends(get_db)):
    if not normalize_slug(code):
        return JSONResponse({"ok": False, "error": "Missing code"}, status_code=400)
    referral = find_referral_by_code(db, code)
    if referral is None:
        return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)
    commission, discount = split_for(referral)
    return {
        "ok": True,
        "referral": {
            "_id": referral.id,
            "name": referral.name,
            "code": referral.slug,
            "commissionPercent": commission,
            "discountPercent": discount,
        },
    }


@router.get("/getData")
async def get_data(id: str = Query(""), db: Session = Depends(get_db)):
    referral_id = id.strip()
    if not referral_id:
        return error_response(InvalidRequest("Missing creator ID"))
    referral = db.query(Referral).filter(Referral.id == referral_id).first()
    if referral is None:
        return error_response(NotFound("Creator not found"))
    return {"ok": True, "referral": referral.to_dashboard_dict()}


@router.post("/updateSplit")
async def update_split(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await read_json(request)
        referral_id = str(payload.get("id") or "").strip()
        if not referral_id:
            raise InvalidRequest("Missing creator ID")
        referral = db.query(Referral).filter(Referral.id == referral_id).first()
        if referral is None:
            raise NotFound("Creator not found")

        commission = to_number(payload.get("commissionPercent"))
        discount = to_number(payload.get("discountPercent"))
        max_total = to_number(referral.max_commission_percent)
        if commission < 0 or discount < 0:
            raise InvalidRequest("Percentages cannot be negative")
        if commission + discount > max_total:
            raise InvalidRequest(f"Total % cannot exceed {max_total:g}")

        referral.current_commission_percent = commission
        referral.current_discount_percent = discount
        db.commit()
        logger.info(f"[referrals.split] referral={referral.id} commission={commission} discount={discount}")
        return {"ok": True}
    except BookingError as ex:
        return error_response(ex)


@router.get("/validateCoupon")
async def validate_coupon(code: str = Query(""), db: Session = Depends(get_db)):
    if not code.strip():
        return JSONResponse({"ok": False, "error": "Missing coupon code."}, status_code=400)
    coupon = find_coupon(db, code)
    if coupon is None:
        return error_response(NotFound("Coupon not found or invalid."))
    try:
        ensure_usable(coupon, datetime.now(timezone.utc))
    except BookingError as ex:
        return error_response(ex)
    return {"ok": True, "coupon": coupon.to_public_dict()}
