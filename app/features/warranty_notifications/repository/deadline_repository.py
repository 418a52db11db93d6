"""
Read-only access to receipts with warranty deadlines.

Each receipt yields one row for its owner and one row per user it has been
shared with. Preference columns come from the users table and are returned
raw; the scheduler validates them per recipient.
"""

from datetime import date, timedelta
from typing import Any, Protocol

from app.db.helpers import DatabaseError, fetch_all, with_db_retry
from app.features.warranty_notifications.domain import DeadlineCandidate
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DeadlineStoreError(Exception):
    """Raised when approaching deadlines cannot be loaded."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class DeadlineRecordStore(Protocol):
    async def find_approaching_deadlines(self, as_of: date) -> list[DeadlineCandidate]: ...


APPROACHING_DEADLINES_QUERY = """
    WITH recipients AS (
        SELECT r.id AS record_id, r.user_id AS owner_id, r.user_id AS recipient_id
        FROM receipts r
        WHERE r.warranty_expiration_date IS NOT NULL
          AND r.warranty_expiration_date::date BETWEEN %s AND %s
        UNION
        SELECT r.id, r.user_id, rs.shared_with_user_id
        FROM receipts r
        JOIN receipt_shares rs ON rs.receipt_id = r.id
        WHERE r.warranty_expiration_date IS NOT NULL
          AND r.warranty_expiration_date::date BETWEEN %s AND %s
    )
    SELECT
        rc.record_id::text AS record_id,
        rc.owner_id::text AS owner_id,
        rc.recipient_id::text AS recipient_id,
        COALESCE(NULLIF(r.product_name, ''), NULLIF(r.description, ''), 'Product') AS label,
        r.warranty_expiration_date AS deadline,
        u.notification_channel,
        u.notification_threshold_days,
        u.opted_out_of_notifications,
        u.email,
        u.phone_number,
        u.phone_number_confirmed
    FROM recipients rc
    JOIN receipts r ON r.id = rc.record_id
    JOIN users u ON u.id = rc.recipient_id
    ORDER BY r.warranty_expiration_date, rc.record_id, rc.recipient_id
"""


def row_to_candidate(row: dict[str, Any]) -> DeadlineCandidate:
    """Map a query row to a candidate; NULL preference columns fall back to model defaults."""
    preference: dict[str, Any] = {
        "email": row.get("email") or "",
        "phone": row.get("phone_number"),
        "phone_verified": bool(row.get("phone_number_confirmed")),
        "opted_out": bool(row.get("opted_out_of_notifications")),
    }
    if row.get("notification_channel") is not None:
        preference["channel"] = row["notification_channel"]
    if row.get("notification_threshold_days") is not None:
        preference["threshold_days"] = row["notification_threshold_days"]

    return DeadlineCandidate(
        record_id=str(row["record_id"]),
        owner_id=str(row["owner_id"]),
        recipient_id=str(row["recipient_id"]),
        label=row.get("label") or "Product",
        deadline=row.get("deadline"),
        preference=preference,
    )


class PostgresDeadlineRepository:
    """DeadlineRecordStore backed by the shared psycopg pool."""

    def __init__(self, horizon_days: int):
        self.horizon_days = horizon_days

    @with_db_retry(max_retries=2)
    async def _fetch_rows(self, start: date, end: date) -> list[dict[str, Any]]:
        return await fetch_all(APPROACHING_DEADLINES_QUERY, (start, end, start, end))

    async def find_approaching_deadlines(self, as_of: date) -> list[DeadlineCandidate]:
        end = as_of + timedelta(days=self.horizon_days)
        try:
            rows = await self._fetch_rows(as_of, end)
        except DatabaseError as e:
            logger.error(
                "Failed to load approaching deadlines",
                as_of=as_of.isoformat(),
                horizon_days=self.horizon_days,
                error=str(e),
            )
            raise DeadlineStoreError(
                f"Failed to load approaching deadlines: {e}",
                operation="find_approaching_deadlines",
                recoverable=e.recoverable,
            ) from e

        candidates = [row_to_candidate(row) for row in rows]
        logger.debug(
            "Approaching deadlines loaded",
            as_of=as_of.isoformat(),
            horizon_days=self.horizon_days,
            candidate_count=len(candidates),
        )
        return candidates
