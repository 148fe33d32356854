"""Role promotion outbox repository."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rentflow_api.db.models import PROMOTION_DELIVERED, PROMOTION_PENDING, RolePromotionEvent


class RolePromotionRepository:
    """Data access for role_promotion_events (one row per activated lease)."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, lease_id: str) -> Optional[RolePromotionEvent]:
        return self.db.get(RolePromotionEvent, lease_id, populate_existing=True)

    def list_pending(self, limit: int = 100) -> list[RolePromotionEvent]:
        stmt = (
            select(RolePromotionEvent)
            .where(RolePromotionEvent.status == PROMOTION_PENDING)
            .order_by(RolePromotionEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def mark_delivered(self, lease_id: str, now: datetime) -> bool:
        """CAS pending → delivered; False if another dispatcher got there first."""
        result = self.db.execute(
            update(RolePromotionEvent)
            .where(
                RolePromotionEvent.lease_id == lease_id,
                RolePromotionEvent.status == PROMOTION_PENDING,
            )
            .values(
                status=PROMOTION_DELIVERED,
                delivered_at=now,
                last_attempt_at=now,
                attempts=RolePromotionEvent.attempts + 1,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_failure(self, lease_id: str, error: str, now: datetime) -> None:
        self.db.execute(
            update(RolePromotionEvent)
            .where(
                RolePromotionEvent.lease_id == lease_id,
                RolePromotionEvent.status == PROMOTION_PENDING,
            )
            .values(
                attempts=RolePromotionEvent.attempts + 1,
                last_error=error[:500],
                last_attempt_at=now,
            )
            .execution_options(synchronize_session=False)
        )
