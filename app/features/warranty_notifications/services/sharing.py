"""
Receipt-shared notifications.

Called by the sharing workflow right after a share is created. Uses the same
channel and leg resolution as the expiration scheduler but no dedupe: every
share is its own event.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from app.features.warranty_notifications.channels import NotificationChannel
from app.features.warranty_notifications.domain import (
    ChannelResult,
    MessageContext,
    NotificationKind,
    RecipientPreference,
)
from app.features.warranty_notifications.services.preferences import (
    build_contact,
    coerce_preference,
    resolve_channel_legs,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

OPTED_OUT_ERROR = "opted out"


async def send_receipt_shared_notification(
    channel: NotificationChannel,
    recipient_id: str,
    preference: RecipientPreference | dict[str, Any],
    shared_by: str,
    receipt_label: str,
    record_id: str,
    share_note: str | None = None,
) -> ChannelResult:
    """
    Tell ``recipient_id`` that ``shared_by`` shared a receipt with them.

    Returns the channel result, or an unsuccessful result with
    ``error="opted out"`` when the recipient's preferences leave nothing to
    send. Never raises for delivery problems.
    """
    try:
        pref = coerce_preference(preference)
    except ValidationError as e:
        logger.error("Invalid recipient preference", recipient_id=recipient_id, error=str(e))
        return ChannelResult(succeeded=False, error=f"invalid preference: {e.error_count()} errors")

    legs = frozenset() if pref.opted_out else resolve_channel_legs(pref, channel.supported_legs)
    if not legs:
        logger.info(
            "Receipt shared notification skipped",
            recipient_id=recipient_id,
            record_id=record_id,
            opted_out=pref.opted_out,
        )
        return ChannelResult(succeeded=False, error=OPTED_OUT_ERROR)

    context = MessageContext(
        kind=NotificationKind.RECEIPT_SHARED,
        record_id=record_id,
        label=receipt_label or "Product",
        shared_by=shared_by,
        share_note=share_note,
        shared_at=datetime.now(UTC),
    )
    result = await channel.send(build_contact(recipient_id, pref, legs), context)

    if result.succeeded:
        logger.info(
            "Receipt shared notification sent",
            recipient_id=recipient_id,
            record_id=record_id,
            sent_legs=[leg.value for leg in result.sent_legs],
        )
    else:
        logger.warning(
            "Receipt shared notification failed",
            recipient_id=recipient_id,
            record_id=record_id,
            error=result.error,
        )
    return result
