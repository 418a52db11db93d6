"""
SMTP email channel.

Builds a multipart (plain text + HTML) message with urgency-based styling
and sends it through any SMTP provider (Gmail, SendGrid, SES, ...).
smtplib is blocking, so delivery runs in a worker thread.
"""

import asyncio
import smtplib
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from html import escape
from typing import Any

from app.config import Settings
from app.features.warranty_notifications.channels.base import NO_CONTACT_ERROR, NotificationChannel
from app.features.warranty_notifications.domain import (
    ChannelLeg,
    ChannelResult,
    MessageContext,
    NotificationKind,
    RecipientContact,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 30
HEALTH_CHECK_TIMEOUT_SECONDS = 5

URGENT_COLOR = "#dc3545"
IMPORTANT_COLOR = "#ffc107"
NOTICE_COLOR = "#17a2b8"


def urgency_tier(days_remaining: int) -> tuple[str, str]:
    """Return (level, color): <=3 urgent, 4..7 important, 8+ notice."""
    if days_remaining <= 3:
        return "URGENT", URGENT_COLOR
    if days_remaining <= 7:
        return "Important", IMPORTANT_COLOR
    return "Notice", NOTICE_COLOR


def _days_phrase(days_remaining: int) -> str:
    return f"{days_remaining} Day{'' if days_remaining == 1 else 's'}"


def render_warranty_email(context: MessageContext) -> tuple[str, str, str]:
    """Return (subject, text body, html body) for a warranty-expiring notification."""
    days = context.days_remaining or 0
    level, color = urgency_tier(days)
    label = escape(context.label)
    record_id = escape(context.record_id)
    expires_on = context.deadline.strftime("%B %d, %Y") if context.deadline else "n/a"

    subject = f"Warranty Expiring Soon: {context.label}"

    text_body = (
        f"{level}: Warranty Expiring Soon\n"
        f"{'=' * 32}\n\n"
        f"Your warranty for {context.label} will expire in {_days_phrase(days).lower()}.\n"
        f"Expiration date: {expires_on}\n\n"
        f"What should you do?\n"
        f"  - Review your receipt and warranty terms\n"
        f"  - Contact the manufacturer or retailer about renewal options\n"
        f"  - Consider extended warranty coverage if available\n"
        f"  - File any pending warranty claims before expiration\n\n"
        f"Receipt ID: {context.record_id}\n"
        f"--\n"
        f"This is an automated notification from your Warranty Management System.\n"
    )

    html_body = f"""\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background-color: {color}; color: white; padding: 15px; border-radius: 5px 5px 0 0;">
    <h2 style="margin: 0;">{level}: Warranty Expiring Soon</h2>
  </div>
  <div style="background-color: #f8f9fa; padding: 20px; border: 1px solid #dee2e6; border-top: none; border-radius: 0 0 5px 5px;">
    <p style="font-size: 16px; margin-top: 0;">
      Your warranty for <strong>{label}</strong> will expire in:
    </p>
    <div style="background-color: white; padding: 15px; margin: 15px 0; border-left: 4px solid {color}; border-radius: 4px;">
      <h1 style="margin: 0; color: {color}; font-size: 36px;">{_days_phrase(days)}</h1>
      <p style="margin: 5px 0 0 0; color: #6c757d;">Expiration Date: {expires_on}</p>
    </div>
    <h3>What should you do?</h3>
    <ul style="padding-left: 20px;">
      <li>Review your receipt and warranty terms</li>
      <li>Contact the manufacturer or retailer about warranty renewal options</li>
      <li>Consider extended warranty coverage if available</li>
      <li>File any pending warranty claims before expiration</li>
    </ul>
    <div style="margin-top: 20px; padding-top: 20px; border-top: 1px solid #dee2e6; font-size: 14px; color: #6c757d;">
      <p style="margin: 5px 0;"><strong>Receipt ID:</strong> {record_id}</p>
      <p style="margin: 5px 0;">This is an automated notification from your Warranty Management System.</p>
    </div>
  </div>
  <div style="margin-top: 20px; text-align: center; font-size: 12px; color: #6c757d;">
    <p>&copy; {datetime.now(UTC).year} Warranty App. All rights reserved.</p>
  </div>
</body>
</html>"""

    return subject, text_body, html_body


def render_receipt_shared_email(context: MessageContext) -> tuple[str, str, str]:
    """Return (subject, text body, html body) for a receipt-shared notification."""
    shared_by = context.shared_by or "Someone"
    note_text = f'\nNote from {shared_by}: "{context.share_note}"\n' if context.share_note else ""
    note_html = (
        f'<p style="margin: 15px 0; padding: 10px 15px; background-color: white; '
        f'border-left: 4px solid {NOTICE_COLOR};"><em>{escape(context.share_note)}</em></p>'
        if context.share_note
        else ""
    )

    subject = f"{shared_by} shared a receipt with you"

    text_body = (
        f"{shared_by} shared a receipt with you: {context.label}\n"
        f"{note_text}\n"
        f"Open your Warranty App to view it. You have read-only access.\n\n"
        f"Receipt ID: {context.record_id}\n"
    )

    html_body = f"""\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background-color: {NOTICE_COLOR}; color: white; padding: 15px; border-radius: 5px 5px 0 0;">
    <h2 style="margin: 0;">A receipt was shared with you</h2>
  </div>
  <div style="background-color: #f8f9fa; padding: 20px; border: 1px solid #dee2e6; border-top: none; border-radius: 0 0 5px 5px;">
    <p style="font-size: 16px; margin-top: 0;">
      <strong>{escape(shared_by)}</strong> shared <strong>{escape(context.label)}</strong> with you.
    </p>
    {note_html}
    <p>Open your Warranty App to view it. You have read-only access.</p>
    <p style="font-size: 14px; color: #6c757d;"><strong>Receipt ID:</strong> {escape(context.record_id)}</p>
  </div>
</body>
</html>"""

    return subject, text_body, html_body


class EmailNotificationChannel(NotificationChannel):
    """Sends notifications over SMTP."""

    name = "email"
    supported_legs = frozenset({ChannelLeg.EMAIL})

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_email: str | None = None,
        from_name: str = "Warranty App",
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.from_name = from_name
        self.use_tls = use_tls

        if self.configured:
            logger.info("Email notification channel initialized", smtp_host=host, smtp_port=port)
        else:
            logger.warning("Email notification channel not configured - SMTP settings missing")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotificationChannel":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password and self.from_email)

    def build_message(self, to_email: str, context: MessageContext) -> MIMEMultipart:
        if context.kind == NotificationKind.RECEIPT_SHARED:
            subject, text_body, html_body = render_receipt_shared_email(context)
        else:
            subject, text_body, html_body = render_warranty_email(context)

        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = to_email
        msg["Date"] = formatdate(localtime=True)
        domain = self.from_email.split("@")[-1] if self.from_email and "@" in self.from_email else "local"
        msg["Message-ID"] = make_msgid(domain=domain)
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _deliver(self, msg: MIMEMultipart, to_email: str) -> None:
        smtp_cls = smtplib.SMTP_SSL if self.port == 465 else smtplib.SMTP
        with smtp_cls(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.ehlo()
            if self.use_tls and smtp_cls is smtplib.SMTP:
                server.starttls()
                server.ehlo()
            server.login(self.username, self.password)
            server.send_message(msg, to_addrs=[to_email])

    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        if not contact.email:
            logger.debug("Email leg skipped - no email address", recipient_id=contact.recipient_id)
            return ChannelResult.failed(ChannelLeg.EMAIL, NO_CONTACT_ERROR)

        if not self.configured:
            logger.warning(
                "Email not sent - SMTP not configured",
                recipient_id=contact.recipient_id,
                record_id=context.record_id,
            )
            return ChannelResult.failed(ChannelLeg.EMAIL, "smtp not configured")

        try:
            msg = self.build_message(contact.email, context)
            await asyncio.to_thread(self._deliver, msg, contact.email)
        except Exception as e:
            logger.warning(
                "Failed to send email notification",
                recipient_id=contact.recipient_id,
                record_id=context.record_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ChannelResult.failed(ChannelLeg.EMAIL, f"{type(e).__name__}: {e}")

        logger.info(
            "Email notification sent",
            recipient_id=contact.recipient_id,
            record_id=context.record_id,
            kind=context.kind.value,
            days_remaining=context.days_remaining,
        )
        return ChannelResult.ok(ChannelLeg.EMAIL)

    async def health_check(self) -> dict[str, Any]:
        """TCP reachability of the SMTP server."""
        if not self.host:
            return {
                "healthy": False,
                "degraded": True,
                "service": "smtp",
                "error": "SMTP configuration not found. Email notifications will not work.",
            }

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
            writer.close()
            await writer.wait_closed()
            return {"healthy": True, "service": "smtp", "host": self.host, "port": self.port}
        except TimeoutError:
            return {
                "healthy": False,
                "degraded": True,
                "service": "smtp",
                "error": f"Connection to SMTP server {self.host}:{self.port} timed out.",
            }
        except OSError as e:
            logger.error("Error checking SMTP health", error=str(e))
            return {
                "healthy": False,
                "service": "smtp",
                "error": f"Failed to connect to SMTP server {self.host}:{self.port}: {e}",
            }
