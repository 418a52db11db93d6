"""
Domain subpackage for the warranty notification feature.
"""

from .models import (
    DEFAULT_THRESHOLD_DAYS,
    ChannelLeg,
    ChannelResult,
    DeadlineCandidate,
    DedupeKey,
    MessageContext,
    NotificationChannelPreference,
    NotificationKind,
    PendingNotification,
    RecipientContact,
    RecipientPreference,
    ScanResult,
)

__all__ = [
    "DEFAULT_THRESHOLD_DAYS",
    "ChannelLeg",
    "ChannelResult",
    "DeadlineCandidate",
    "DedupeKey",
    "MessageContext",
    "NotificationChannelPreference",
    "NotificationKind",
    "PendingNotification",
    "RecipientContact",
    "RecipientPreference",
    "ScanResult",
]
