import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


# Scheduling
HOST_TIMEZONE = (os.getenv("HOST_TIMEZONE", "Asia/Kolkata") or "Asia/Kolkata").strip()
SLOT_HOLD_TTL_MINUTES = int(os.getenv("SLOT_HOLD_TTL_MINUTES", "15"))

# Notifications
SITE_NAME = os.getenv("SITE_NAME", "Roo Industries")
LOGO_URL = os.getenv("LOGO_URL", "https://rooindustries.com/embed_logo.png")
DISCORD_INVITE_URL = os.getenv("DISCORD_INVITE_URL", "https://discord.gg/M7nTkn9dxE")
OWNER_EMAIL = (os.getenv("OWNER_EMAIL", "") or "").strip()
MAIL_FROM = (os.getenv("MAIL_FROM") or os.getenv("FROM_EMAIL") or "").strip()
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")

# Payments (Razorpay)
RAZORPAY_KEY_ID = (os.getenv("RAZORPAY_KEY_ID", "") or "").strip()
RAZORPAY_KEY_SECRET = (os.getenv("RAZORPAY_KEY_SECRET", "") or "").strip()
RAZORPAY_CHECKOUT_CONFIG_ID = (os.getenv("RAZORPAY_CHECKOUT_CONFIG_ID", "") or "").strip()

# Payments (PayPal)
PAYPAL_CLIENT_ID = (os.getenv("PAYPAL_CLIENT_ID", "") or "").strip()
PAYPAL_CLIENT_SECRET = (os.getenv("PAYPAL_CLIENT_SECRET", "") or "").strip()
PAYPAL_API_BASE = (os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com") or "").strip().rstrip("/")
PAYPAL_VERIFY_ORDERS = _flag("PAYPAL_VERIFY_ORDERS")

# Referral payouts
REF_ADMIN_KEY = (os.getenv("REF_ADMIN_KEY") or os.getenv("REFERRAL_ADMIN_KEY") or "").strip()
CRON_SECRET = (os.getenv("CRON_SECRET", "") or "").strip()
WEBHOOK_SECRET = (os.getenv("WEBHOOK_SECRET") or os.getenv("SANITY_WEBHOOK_SECRET") or "").strip()
PAYOUT_AUTO_SYNC = _flag("PAYOUT_AUTO_SYNC", "1")
RUN_PAYOUT_SCHEDULER = _flag("RUN_PAYOUT_SCHEDULER")
PAYOUT_SYNC_INTERVAL_SEC = int(os.getenv("PAYOUT_SYNC_INTERVAL_SEC", "3600"))

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("rooindustries")

# Templates dir helper
TEMPLATES_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "templates"))


# Per-service settings, handed to services explicitly instead of read from the environment

@dataclass(frozen=True)
class MailConfig:
    mail_from: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""

    @classmethod
    def from_env(cls) -> "MailConfig":
        return cls(
            mail_from=MAIL_FROM,
            smtp_host=SMTP_HOST,
            smtp_port=SMTP_PORT,
            smtp_user=SMTP_USER,
            smtp_pass=SMTP_PASS,
        )


@dataclass(frozen=True)
class RazorpayConfig:
    key_id: str = ""
    key_secret: str = ""
    checkout_config_id: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @classmethod
    def from_env(cls) -> "RazorpayConfig":
        return cls(
            key_id=RAZORPAY_KEY_ID,
            key_secret=RAZORPAY_KEY_SECRET,
            checkout_config_id=RAZORPAY_CHECKOUT_CONFIG_ID,
        )


@dataclass(frozen=True)
class PayPalConfig:
    client_id: str = ""
    client_secret: str = ""
    api_base: str = "https://api-m.sandbox.paypal.com"
    verify_orders: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls) -> "PayPalConfig":
        return cls(
            client_id=PAYPAL_CLIENT_ID,
            client_secret=PAYPAL_CLIENT_SECRET,
            api_base=PAYPAL_API_BASE,
            verify_orders=PAYPAL_VERIFY_ORDERS,
        )


@dataclass(frozen=True)
class BookingConfig:
    host_timezone: str = "Asia/Kolkata"
    hold_ttl_minutes: int = 15
    owner_email: str = ""
    mail_from: str = ""
    site_name: str = "Roo Industries"
    logo_url: str = ""
    discord_invite_url: str = ""

    @classmethod
    def from_env(cls) -> "BookingConfig":
        return cls(
            host_timezone=HOST_TIMEZONE,
            hold_ttl_minutes=SLOT_HOLD_TTL_MINUTES,
            owner_email=OWNER_EMAIL,
            mail_from=MAIL_FROM,
            site_name=SITE_NAME,
            logo_url=LOGO_URL,
            discord_invite_url=DISCORD_INVITE_URL,
        )


@dataclass(frozen=True)
class PayoutConfig:
    admin_key: str = ""
    cron_secret: str = ""
    webhook_secret: str = ""
    auto_sync: bool = True

    @classmethod
    def from_env(cls) -> "PayoutConfig":
        return cls(
            admin_key=REF_ADMIN_KEY,
            cron_secret=CRON_SECRET,
            webhook_secret=WEBHOOK_SECRET,
            auto_sync=PAYOUT_AUTO_SYNC,
        )


def get_booking_config() -> BookingConfig:
    return BookingConfig.from_env()


def get_payout_config() -> PayoutConfig:
    return PayoutConfig.from_env()


def get_razorpay_config() -> RazorpayConfig:
    return RazorpayConfig.from_env()


def get_paypal_config() -> PayPalConfig:
    return PayPalConfig.from_env()


def get_mail_config() -> MailConfig:
    return MailConfig.from_env()
