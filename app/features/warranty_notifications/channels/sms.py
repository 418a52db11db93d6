"""
SMS channel backed by the Twilio Messages REST API.
"""

from collections.abc import Callable
from typing import Any

import httpx

from app.config import Settings
from app.features.warranty_notifications.channels.base import NO_CONTACT_ERROR, NotificationChannel
from app.features.warranty_notifications.domain import (
    ChannelLeg,
    ChannelResult,
    MessageContext,
    NotificationKind,
    RecipientContact,
)
from app.features.warranty_notifications.services.preferences import mask_phone_number
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"
REQUEST_TIMEOUT = 15  # seconds
SMS_MAX_LENGTH = 160
ELLIPSIS = "..."


def _fit_label(render: Callable[[str], str], label: str) -> str:
    """Render the message, shortening ``label`` until it fits one SMS segment."""
    message = render(label)
    if len(message) <= SMS_MAX_LENGTH:
        return message

    room = SMS_MAX_LENGTH - len(render(""))
    if room > len(ELLIPSIS):
        return render(label[: room - len(ELLIPSIS)] + ELLIPSIS)
    return message[:SMS_MAX_LENGTH]


def render_sms(context: MessageContext) -> str:
    """Plain-text SMS body, at most ``SMS_MAX_LENGTH`` characters."""
    if context.kind == NotificationKind.RECEIPT_SHARED:
        shared_by = context.shared_by or "Someone"
        return _fit_label(
            lambda label: (
                f"{shared_by} shared a receipt with you: '{label}'. "
                "Check your Warranty App to view it."
            ),
            context.label,
        )

    days = context.days_remaining or 0
    urgency = "URGENT: " if days <= 3 else ""
    expires_on = context.deadline.strftime("%m/%d/%Y") if context.deadline else "soon"
    return _fit_label(
        lambda label: (
            f"{urgency}Warranty Alert: Your warranty for '{label}' expires in "
            f"{days} day(s) on {expires_on}. Review your coverage options soon."
        ),
        context.label,
    )


class SmsNotificationChannel(NotificationChannel):
    """Sends notifications as text messages through Twilio."""

    name = "sms"
    supported_legs = frozenset({ChannelLeg.SMS})

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT))

        if self.configured:
            logger.info(
                "SMS notification channel initialized with Twilio",
                from_number=mask_phone_number(from_number),
            )
        else:
            logger.warning("SMS notification channel not configured - Twilio credentials missing")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmsNotificationChannel":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_FROM_NUMBER,
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        if not contact.phone or not contact.phone.strip():
            logger.debug("SMS leg skipped - no phone number", recipient_id=contact.recipient_id)
            return ChannelResult.failed(ChannelLeg.SMS, NO_CONTACT_ERROR)

        if not self.configured:
            logger.warning(
                "SMS not sent - Twilio not configured",
                recipient_id=contact.recipient_id,
                record_id=context.record_id,
            )
            return ChannelResult.failed(ChannelLeg.SMS, "twilio not configured")

        body = render_sms(context)
        masked = mask_phone_number(contact.phone)

        try:
            response = await self._client.post(
                f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}/Messages.json",
                data={"To": contact.phone.strip(), "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to send SMS notification",
                phone=masked,
                record_id=context.record_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ChannelResult.failed(ChannelLeg.SMS, f"{type(e).__name__}: {e}")

        if response.status_code not in (200, 201):
            error = _twilio_error_message(response)
            logger.warning(
                "Twilio rejected SMS notification",
                phone=masked,
                record_id=context.record_id,
                status_code=response.status_code,
                error=error,
            )
            return ChannelResult.failed(ChannelLeg.SMS, f"twilio {response.status_code}: {error}")

        logger.info(
            "SMS notification sent",
            phone=masked,
            recipient_id=contact.recipient_id,
            record_id=context.record_id,
            kind=context.kind.value,
        )
        return ChannelResult.ok(ChannelLeg.SMS)

    async def health_check(self) -> dict[str, Any]:
        """Verify Twilio credentials against the account endpoint."""
        if not (self.account_sid and self.auth_token):
            return {
                "healthy": False,
                "degraded": True,
                "service": "twilio",
                "error": "Twilio credentials not configured. SMS features will not work.",
            }

        try:
            response = await self._client.get(
                f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}.json",
                auth=(self.account_sid, self.auth_token),
                timeout=5,
            )
        except httpx.TimeoutException:
            return {"healthy": False, "degraded": True, "service": "twilio", "error": "Twilio API health check timed out."}
        except httpx.HTTPError as e:
            logger.error("Error checking Twilio health", error=str(e))
            return {"healthy": False, "service": "twilio", "error": f"Error connecting to Twilio API: {e}"}

        if response.status_code == 200:
            return {"healthy": True, "service": "twilio"}
        if response.status_code == 401:
            return {"healthy": False, "service": "twilio", "error": "Twilio credentials are invalid."}
        return {
            "healthy": False,
            "degraded": True,
            "service": "twilio",
            "error": f"Twilio API returned status code: {response.status_code}",
        }


def _twilio_error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.text[:200]
    except ValueError:
        return response.text[:200]
