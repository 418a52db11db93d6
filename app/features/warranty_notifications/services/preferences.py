"""
Preference evaluation shared by the scheduler and the receipt-shared flow.
"""

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from app.features.warranty_notifications.domain import (
    ChannelLeg,
    RecipientContact,
    RecipientPreference,
)


def coerce_preference(raw: RecipientPreference | dict[str, Any]) -> RecipientPreference:
    """Validate a raw preference mapping; raises pydantic.ValidationError on bad data."""
    if isinstance(raw, RecipientPreference):
        return raw
    return RecipientPreference.model_validate(raw)


def deadline_date(deadline: datetime | date | None) -> date:
    if deadline is None:
        raise ValueError("record has no deadline")
    if isinstance(deadline, datetime):
        return deadline.date()
    return deadline


def is_within_threshold(days_remaining: int, threshold_days: int) -> bool:
    """Deadlines from today up to and including ``threshold_days`` away qualify."""
    return 0 <= days_remaining <= threshold_days


def has_usable_phone(preference: RecipientPreference) -> bool:
    return bool(preference.phone and preference.phone.strip()) and preference.phone_verified


def resolve_channel_legs(
    preference: RecipientPreference, supported: Iterable[ChannelLeg]
) -> frozenset[ChannelLeg]:
    """
    Intersect the requested legs with available contact info and the legs the
    active channel can deliver. Unusable legs are dropped, never failed.
    """
    legs = set(preference.requested_legs()) & set(supported)

    if ChannelLeg.SMS in legs and not has_usable_phone(preference):
        legs.discard(ChannelLeg.SMS)
    if ChannelLeg.EMAIL in legs and not preference.email.strip():
        legs.discard(ChannelLeg.EMAIL)

    return frozenset(legs)


def build_contact(
    recipient_id: str, preference: RecipientPreference, legs: frozenset[ChannelLeg]
) -> RecipientContact:
    """Contact carrying only the fields for the resolved legs."""
    return RecipientContact(
        recipient_id=recipient_id,
        email=preference.email.strip() if ChannelLeg.EMAIL in legs else None,
        phone=preference.phone.strip() if ChannelLeg.SMS in legs and preference.phone else None,
    )


def mask_phone_number(phone_number: str | None) -> str:
    if not phone_number or len(phone_number.strip()) < 4:
        return "****"
    return f"****{phone_number.strip()[-4:]}"
