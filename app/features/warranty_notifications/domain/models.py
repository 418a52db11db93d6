"""
Domain models for the warranty notification feature.

Dataclasses describe what the scheduler moves around in a scan cycle;
recipient preferences are pydantic models because they come straight from
database rows and must be validated per recipient.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.config import MAX_THRESHOLD_DAYS

DEFAULT_THRESHOLD_DAYS = 7


class NotificationChannelPreference(IntEnum):
    """Channel a user picked in their notification settings (stored as int)."""

    NONE = 0
    EMAIL_ONLY = 1
    SMS_ONLY = 2
    EMAIL_AND_SMS = 3


class ChannelLeg(str, Enum):
    """One medium within a notification attempt."""

    EMAIL = "email"
    SMS = "sms"


class NotificationKind(str, Enum):
    WARRANTY_EXPIRING = "warranty_expiring"
    RECEIPT_SHARED = "receipt_shared"


class RecipientPreference(BaseModel):
    """Per-recipient notification settings joined from the users table."""

    model_config = ConfigDict(frozen=True)

    channel: NotificationChannelPreference = NotificationChannelPreference.EMAIL_AND_SMS
    threshold_days: int = Field(default=DEFAULT_THRESHOLD_DAYS, ge=1, le=MAX_THRESHOLD_DAYS)
    opted_out: bool = False
    email: str = Field(min_length=1)
    phone: str | None = None
    phone_verified: bool = False

    def requested_legs(self) -> frozenset[ChannelLeg]:
        if self.channel == NotificationChannelPreference.EMAIL_ONLY:
            return frozenset({ChannelLeg.EMAIL})
        if self.channel == NotificationChannelPreference.SMS_ONLY:
            return frozenset({ChannelLeg.SMS})
        if self.channel == NotificationChannelPreference.EMAIL_AND_SMS:
            return frozenset({ChannelLeg.EMAIL, ChannelLeg.SMS})
        return frozenset()


@dataclass(slots=True)
class DeadlineCandidate:
    """One (record, recipient, preference) triple returned by the record store.

    ``preference`` is either an already validated model or the raw column
    mapping; raw mappings are validated per triple during the scan.
    """

    record_id: str
    owner_id: str
    recipient_id: str
    label: str
    deadline: datetime | date | None
    preference: RecipientPreference | dict[str, Any]


@dataclass(frozen=True, slots=True)
class DedupeKey:
    """Identity of "this recipient was told about this record's deadline"."""

    record_id: str
    recipient_id: str

    def cache_key(self) -> str:
        return f"{self.record_id}:{self.recipient_id}"


@dataclass(frozen=True, slots=True)
class PendingNotification:
    """An approaching deadline computed in one scan pass."""

    record_id: str
    recipient_id: str
    owner_id: str
    deadline: date
    days_remaining: int
    label: str

    @property
    def dedupe_key(self) -> DedupeKey:
        return DedupeKey(self.record_id, self.recipient_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["deadline"] = self.deadline.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingNotification":
        return cls(
            record_id=str(data["record_id"]),
            recipient_id=str(data["recipient_id"]),
            owner_id=str(data["owner_id"]),
            deadline=date.fromisoformat(data["deadline"]),
            days_remaining=int(data["days_remaining"]),
            label=data["label"],
        )


@dataclass(frozen=True, slots=True)
class RecipientContact:
    """Contact details a channel may use; legs without a value are not attempted."""

    recipient_id: str
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Everything a channel needs to render one notification."""

    kind: NotificationKind
    record_id: str
    label: str
    days_remaining: int | None = None
    deadline: date | None = None
    shared_by: str | None = None
    share_note: str | None = None
    shared_at: datetime | None = None


@dataclass(slots=True)
class ChannelResult:
    """Outcome of one channel send."""

    succeeded: bool
    error: str | None = None
    sent_legs: list[ChannelLeg] = field(default_factory=list)
    failed_legs: list[ChannelLeg] = field(default_factory=list)

    @classmethod
    def ok(cls, leg: ChannelLeg) -> "ChannelResult":
        return cls(succeeded=True, sent_legs=[leg])

    @classmethod
    def failed(cls, leg: ChannelLeg, error: str) -> "ChannelResult":
        return cls(succeeded=False, error=error, failed_legs=[leg])


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Counts produced by a single scheduler pass."""

    as_of: date
    found: int = 0
    notified: int = 0
    skipped_dedupe: int = 0
    skipped_optout: int = 0
    failed: int = 0
    abandoned: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["as_of"] = self.as_of.isoformat()
        return data
