"""
Warranty notification routes.

Serves the per-owner "expiring soon" view computed by the last scan. The
scheduler lives on ``app.state.warranty_scheduler`` (set in the lifespan).
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.features.warranty_notifications.api.schemas import (
    ExpiringWarrantyCountResponse,
    ExpiringWarrantyResponse,
)
from app.features.warranty_notifications.cache import NotificationCacheError
from app.features.warranty_notifications.services.scheduler import WarrantyExpirationScheduler
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/warranty-notifications", tags=["warranty-notifications"])


def get_warranty_scheduler(request: Request) -> WarrantyExpirationScheduler:
    scheduler = getattr(request.app.state, "warranty_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Warranty scheduler not available",
        )
    return scheduler


@router.get("/status")
async def get_scheduler_status(
    scheduler: WarrantyExpirationScheduler = Depends(get_warranty_scheduler),
) -> dict[str, Any]:
    """Scheduler state, last run and configuration."""
    return scheduler.get_status()


@router.get("/{owner_id}/expiring", response_model=list[ExpiringWarrantyResponse])
async def list_expiring_warranties(
    owner_id: str,
    scheduler: WarrantyExpirationScheduler = Depends(get_warranty_scheduler),
):
    """Warranties of ``owner_id`` expiring within their threshold, soonest first."""
    try:
        items = await scheduler.get_approaching_deadlines(owner_id)
    except NotificationCacheError as e:
        logger.error("Error reading expiring warranties", owner_id=owner_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Expiring warranties temporarily unavailable",
        ) from e

    return [ExpiringWarrantyResponse.from_pending(item) for item in items]


@router.get("/{owner_id}/expiring/count", response_model=ExpiringWarrantyCountResponse)
async def count_expiring_warranties(
    owner_id: str,
    scheduler: WarrantyExpirationScheduler = Depends(get_warranty_scheduler),
):
    try:
        count = await scheduler.get_approaching_deadline_count(owner_id)
    except NotificationCacheError as e:
        logger.error("Error counting expiring warranties", owner_id=owner_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Expiring warranties temporarily unavailable",
        ) from e

    return ExpiringWarrantyCountResponse(count=count, owner_id=owner_id)
