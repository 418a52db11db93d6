"""
Log-only channel for environments without configured transports.
"""

from app.features.warranty_notifications.channels.base import NotificationChannel
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


class LogNotificationChannel(NotificationChannel):
    """Records the notification in the structured log instead of sending it."""

    name = "log"
    supported_legs = frozenset({ChannelLeg.EMAIL, ChannelLeg.SMS})

    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        legs = []
        if contact.email:
            legs.append(ChannelLeg.EMAIL)
        if contact.phone:
            legs.append(ChannelLeg.SMS)

        fields = {
            "recipient_id": contact.recipient_id,
            "email": contact.email,
            "phone": mask_phone_number(contact.phone) if contact.phone else None,
            "label": context.label or "Unknown Product",
            "record_id": context.record_id,
            "legs": [leg.value for leg in legs],
        }

        if context.kind == NotificationKind.RECEIPT_SHARED:
            logger.warning(
                "RECEIPT SHARED NOTIFICATION",
                shared_by=context.shared_by,
                share_note=context.share_note,
                **fields,
            )
        else:
            logger.warning(
                "WARRANTY EXPIRATION NOTIFICATION",
                days_remaining=context.days_remaining,
                deadline=context.deadline.isoformat() if context.deadline else None,
                **fields,
            )

        return ChannelResult(succeeded=True, sent_legs=legs)
