"""
Response models for the warranty notification endpoints.
"""

from datetime import date

from pydantic import BaseModel

from app.features.warranty_notifications.domain import PendingNotification


class ExpiringWarrantyResponse(BaseModel):
    record_id: str
    owner_id: str
    label: str
    deadline: date
    days_remaining: int

    @classmethod
    def from_pending(cls, item: PendingNotification) -> "ExpiringWarrantyResponse":
        return cls(
            record_id=item.record_id,
            owner_id=item.owner_id,
            label=item.label,
            deadline=item.deadline,
            days_remaining=item.days_remaining,
        )


class ExpiringWarrantyCountResponse(BaseModel):
    count: int
    owner_id: str
