import smtplib
import uuid
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Callable, Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import TEMPLATES_DIR, MailConfig, get_mail_config, logger

# Jinja env
_jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)

# A notification sender takes {"from", "to", "subject", "html"} and reports success
Notifier = Callable[[dict], bool]


def render_email(template_name: str, **context) -> str:
    return _jinja_env.get_template(template_name).render(**context)


def send_email_smtp(
    config: MailConfig,
    to_addr: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    from_addr: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    try:
        sender = (from_addr or config.mail_from or "").strip()
        if not config.smtp_host or not config.smtp_pass or not sender:
            logger.error("SMTP not configured; cannot send email")
            return False

        # Generate Message-ID for better deliverability
        domain = sender.split("@")[-1].strip(">") if "@" in sender else "localhost"
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to_addr
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
        msg["Date"] = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
        if reply_to:
            msg["Reply-To"] = reply_to
        if not text:
            text = "Open this message in an HTML-capable email client."
        msg.attach(MIMEText(text, "plain", _charset="utf-8"))
        msg.attach(MIMEText(html or "", "html", _charset="utf-8"))

        envelope_from = sender.split("<")[-1].strip(">").strip() if "<" in sender else sender
        with smtplib.SMTP(config.smtp_host, config.smtp_port) as server:
            server.starttls()
            if config.smtp_user or config.smtp_pass:
                server.login(config.smtp_user, config.smtp_pass)
            server.sendmail(envelope_from, [to_addr], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as ex:
        logger.exception(f"SMTP send failed: {ex}")
        return False


def smtp_notifier(config: MailConfig) -> Notifier:
    """Adapt SMTP delivery to the {from, to, subject, html} notification contract."""
    def _send(message: dict) -> bool:
        return send_email_smtp(
            config,
            message["to"],
            message["subject"],
            message["html"],
            from_addr=message.get("from"),
        )
    return _send


def get_notifier() -> Notifier:
    return smtp_notifier(get_mail_config())
