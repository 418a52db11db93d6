"""
Composite channel: email and SMS legs sent independently.
"""

import asyncio
from dataclasses import replace
from typing import Any

from app.features.warranty_notifications.channels.base import NO_CONTACT_ERROR, NotificationChannel
from app.features.warranty_notifications.domain import (
    ChannelLeg,
    ChannelResult,
    MessageContext,
    RecipientContact,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CompositeNotificationChannel(NotificationChannel):
    """
    Fans a notification out to the email and SMS channels.

    Only legs for which the contact carries a value are attempted. Legs run
    concurrently with no short-circuit; one successful leg makes the whole
    send successful.
    """

    name = "composite"

    def __init__(self, email_channel: NotificationChannel, sms_channel: NotificationChannel):
        self.email_channel = email_channel
        self.sms_channel = sms_channel
        self.supported_legs = frozenset(email_channel.supported_legs | sms_channel.supported_legs)

    async def close(self) -> None:
        await asyncio.gather(self.email_channel.close(), self.sms_channel.close())

    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        attempts: list[tuple[ChannelLeg, NotificationChannel, RecipientContact]] = []
        if contact.email:
            attempts.append((ChannelLeg.EMAIL, self.email_channel, replace(contact, phone=None)))
        if contact.phone:
            attempts.append((ChannelLeg.SMS, self.sms_channel, replace(contact, email=None)))

        if not attempts:
            logger.warning("No notification legs available", recipient_id=contact.recipient_id)
            return ChannelResult(succeeded=False, error=NO_CONTACT_ERROR)

        outcomes = await asyncio.gather(
            *(channel.send(leg_contact, context) for _, channel, leg_contact in attempts),
            return_exceptions=True,
        )

        result = ChannelResult(succeeded=False)
        errors: list[str] = []
        for (leg, _, _), outcome in zip(attempts, outcomes):
            if isinstance(outcome, BaseException):
                # Channels should not raise; treat it as a failed leg anyway
                outcome = ChannelResult.failed(leg, f"{type(outcome).__name__}: {outcome}")

            if outcome.succeeded:
                result.sent_legs.append(leg)
            else:
                result.failed_legs.append(leg)
                errors.append(f"{leg.value}: {outcome.error}")
                logger.warning(
                    "Notification leg failed",
                    leg=leg.value,
                    recipient_id=contact.recipient_id,
                    record_id=context.record_id,
                    error=outcome.error,
                )

        result.succeeded = bool(result.sent_legs)
        if errors:
            result.error = "; ".join(errors)

        logger.info(
            "Composite notification completed",
            recipient_id=contact.recipient_id,
            record_id=context.record_id,
            sent_legs=[leg.value for leg in result.sent_legs],
            failed_legs=[leg.value for leg in result.failed_legs],
        )
        return result

    async def health_check(self) -> dict[str, Any]:
        email_health, sms_health = await asyncio.gather(
            self.email_channel.health_check(), self.sms_channel.health_check()
        )
        return {
            "healthy": email_health.get("healthy", False) or sms_health.get("healthy", False),
            "service": "composite_channel",
            "email": email_health,
            "sms": sms_health,
        }
