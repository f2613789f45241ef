from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import os

from core.config import PayoutConfig, RUN_PAYOUT_SCHEDULER, PAYOUT_SYNC_INTERVAL_SEC, logger  # type: ignore

# Routers
from routers import booking, payouts, razorpay, referrals, slot_holds  # type: ignore

app = FastAPI(title="Roo Industries Booking API")

# ---- CORS setup ----
# Prefer ALLOWED_ORIGINS, but also support legacy env names used in .env
_default_origins = ",".join([
    "https://rooindustries.com",
    "https://www.rooindustries.com",
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
])
_origins_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or _default_origins
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
# Optional regex to match specific domains - SECURITY: Never use .* in production!
_origin_regex_raw = os.getenv("ALLOWED_ORIGINS_REGEX") or os.getenv("CORS_ORIGIN_REGEX") or ""
# Reject overly permissive patterns that would allow any origin
_origin_regex_env = _origin_regex_raw if (_origin_regex_raw and _origin_regex_raw.strip() not in (".*", "^.*$", ".+")) else None
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=_origin_regex_env,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Security headers ---
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # API responses carry no markup
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


app.include_router(slot_holds.router)
app.include_router(booking.router)
app.include_router(payouts.router)
app.include_router(razorpay.router)
app.include_router(referrals.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


def _payout_sync_once():
    from core.database import SessionLocal
    from utils.payouts import PayoutSyncService

    db = SessionLocal()
    try:
        return PayoutSyncService(db, PayoutConfig.from_env()).sync_all()
    finally:
        db.close()


async def _payout_scheduler_loop():
    interval = max(60, PAYOUT_SYNC_INTERVAL_SEC)
    while True:
        try:
            await asyncio.to_thread(_payout_sync_once)
        except Exception as ex:
            logger.exception(f"[payouts.scheduler] run failed: {ex}")
        await asyncio.sleep(interval)


@app.on_event("startup")
async def _init_schema():
    try:
        from core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.on_event("startup")
async def _start_payout_scheduler():
    if RUN_PAYOUT_SCHEDULER:
        logger.info(f"[payouts.scheduler] every {PAYOUT_SYNC_INTERVAL_SEC}s")
        asyncio.create_task(_payout_scheduler_loop())
