import hmac
import hashlib
from typing import Optional
from fastapi import Request

from core.config import logger


def check_admin_key(configured_key: str, supplied_key: Optional[str]) -> bool:
    """
    Admin key gate for payout mutations.
    The key is optional: when none is configured every caller passes.
    """
    if not configured_key:
        return True
    return hmac.compare_digest(configured_key, str(supplied_key or "").strip())


def get_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "") or ""
    if not auth_header.lower().startswith("bearer "):
        return ""
    return auth_header[7:].strip()


def check_cron_authorization(request: Request, cron_secret: str) -> bool:
    """Scheduled jobs must present `Authorization: Bearer <CRON_SECRET>`."""
    if not cron_secret:
        logger.warning("[auth.cron] CRON_SECRET not configured; rejecting scheduled call")
        return False
    token = get_bearer_token(request)
    return bool(token) and hmac.compare_digest(token, cron_secret)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """
    HMAC-SHA256 (hex) over the raw payload.
    Skipped entirely when no secret is configured.
    """
    if not secret:
        return True
    sig = (signature or "").strip()
    if sig.startswith("sha256="):
        sig = sig[len("sha256="):]
    if not sig:
        return False
    return hmac.compare_digest(compute_signature(secret, body), sig)
