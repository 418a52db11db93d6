import pytest
from pydantic import ValidationError

from app.features.warranty_notifications.domain import (
    ChannelLeg,
    NotificationChannelPreference,
    RecipientPreference,
)
from app.features.warranty_notifications.services.preferences import (
    build_contact,
    coerce_preference,
    is_within_threshold,
    mask_phone_number,
    resolve_channel_legs,
)

BOTH = (ChannelLeg.EMAIL, ChannelLeg.SMS)


def _pref(**overrides) -> RecipientPreference:
    data = {"email": "u1@example.com", "phone": "+15551234567", "phone_verified": True}
    data.update(overrides)
    return RecipientPreference(**data)


@pytest.mark.parametrize(
    ("channel", "expected"),
    [
        (NotificationChannelPreference.NONE, set()),
        (NotificationChannelPreference.EMAIL_ONLY, {ChannelLeg.EMAIL}),
        (NotificationChannelPreference.SMS_ONLY, {ChannelLeg.SMS}),
        (NotificationChannelPreference.EMAIL_AND_SMS, {ChannelLeg.EMAIL, ChannelLeg.SMS}),
    ],
)
def test_resolve_legs_follows_channel_preference(channel, expected):
    assert resolve_channel_legs(_pref(channel=channel), BOTH) == expected


@pytest.mark.parametrize(
    ("phone", "verified"),
    [(None, True), ("", True), ("   ", True), ("+15551234567", False)],
)
def test_sms_leg_requires_verified_phone(phone, verified):
    legs = resolve_channel_legs(_pref(phone=phone, phone_verified=verified), BOTH)

    assert legs == {ChannelLeg.EMAIL}


def test_resolve_legs_intersects_supported_legs():
    assert resolve_channel_legs(_pref(), [ChannelLeg.EMAIL]) == {ChannelLeg.EMAIL}


def test_build_contact_only_carries_resolved_legs():
    contact = build_contact("u1", _pref(phone=" +15551234567 "), frozenset({ChannelLeg.SMS}))

    assert contact.email is None
    assert contact.phone == "+15551234567"


def test_preference_defaults_and_validation():
    pref = coerce_preference({"email": "u1@example.com"})
    assert pref.channel == NotificationChannelPreference.EMAIL_AND_SMS
    assert pref.threshold_days == 7
    assert pref.opted_out is False

    assert coerce_preference({"email": "a@b.c", "channel": 2}).channel == (
        NotificationChannelPreference.SMS_ONLY
    )

    with pytest.raises(ValidationError):
        coerce_preference({"email": "u1@example.com", "threshold_days": 0})
    with pytest.raises(ValidationError):
        coerce_preference({"email": "u1@example.com", "threshold_days": 91})
    with pytest.raises(ValidationError):
        coerce_preference({"email": "u1@example.com", "channel": 7})


@pytest.mark.parametrize(
    ("days", "threshold", "expected"),
    [(0, 7, True), (7, 7, True), (8, 7, False), (-1, 7, False), (90, 90, True)],
)
def test_threshold_window(days, threshold, expected):
    assert is_within_threshold(days, threshold) is expected


@pytest.mark.parametrize(
    ("phone", "masked"),
    [("+15551234567", "****4567"), ("123", "****"), (None, "****")],
)
def test_mask_phone_number(phone, masked):
    assert mask_phone_number(phone) == masked
