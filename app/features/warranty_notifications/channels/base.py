"""
Notification channel interface.

A channel delivers one notification to one recipient through one or more
media. Implementations convert transport errors into a failed
``ChannelResult``; nothing is raised past ``send``.
"""

from abc import ABC, abstractmethod
from typing import Any

from app.features.warranty_notifications.domain import (
    ChannelLeg,
    ChannelResult,
    MessageContext,
    RecipientContact,
)

NO_CONTACT_ERROR = "no contact"


class NotificationChannelError(Exception):
    """Raised when a channel cannot be constructed from configuration."""

    def __init__(self, message: str, channel: str | None = None):
        super().__init__(message)
        self.channel = channel


class NotificationChannel(ABC):
    """Base class for email, SMS, log and composite channels."""

    name: str = "channel"
    supported_legs: frozenset[ChannelLeg] = frozenset()

    @abstractmethod
    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        """Deliver a single notification."""

    async def close(self) -> None:
        """Release transport resources."""
        return None

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": True, "service": f"{self.name}_channel"}
