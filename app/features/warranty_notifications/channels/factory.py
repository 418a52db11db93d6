"""
Configuration-driven channel selection.
"""

from app.config import Settings
from app.features.warranty_notifications.channels.base import (
    NotificationChannel,
    NotificationChannelError,
)
from app.features.warranty_notifications.channels.composite import CompositeNotificationChannel
from app.features.warranty_notifications.channels.email import EmailNotificationChannel
from app.features.warranty_notifications.channels.log import LogNotificationChannel
from app.features.warranty_notifications.channels.sms import SmsNotificationChannel
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def create_notification_channel(settings: Settings) -> NotificationChannel:
    """Build the channel named by NOTIFICATION_CHANNEL (log, email, sms, composite)."""
    kind = settings.NOTIFICATION_CHANNEL

    if kind == "log":
        channel = LogNotificationChannel()
    elif kind == "email":
        channel = EmailNotificationChannel.from_settings(settings)
    elif kind == "sms":
        channel = SmsNotificationChannel.from_settings(settings)
    elif kind == "composite":
        channel = CompositeNotificationChannel(
            EmailNotificationChannel.from_settings(settings),
            SmsNotificationChannel.from_settings(settings),
        )
    else:
        raise NotificationChannelError(f"Unknown notification channel '{kind}'", channel=kind)

    missing = []
    if kind in ("email", "composite") and not settings.smtp_configured():
        missing.append("smtp")
    if kind in ("sms", "composite") and not settings.twilio_configured():
        missing.append("twilio")
    if missing:
        logger.warning("Notification transport not configured", channel=kind, missing=missing)

    logger.info(
        "Notification channel selected",
        channel=channel.name,
        supported_legs=sorted(leg.value for leg in channel.supported_legs),
    )
    return channel
