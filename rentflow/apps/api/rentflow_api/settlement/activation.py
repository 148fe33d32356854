"""Lease Activation Trigger.

Runs after any payment completes. Activation is a CAS on the lease row
(awaiting_payment → active) whose WHERE clause re-checks signatures and
required payments, so two payments completing together activate once.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.context import settlement_context
from rentflow_api.db.models import LEASE_ACTIVE, LEASE_AWAITING_PAYMENT
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.db.repo_promotions import RolePromotionRepository
from rentflow_api.settlement.promotion import (
    RolePromoter,
    deliver_role_promotion,
    get_role_promoter,
)
from rentflow_api.settlement.tracker import track_required_payments

logger = logging.getLogger(__name__)

ACTIVATED = "activated"
ALREADY_ACTIVE = "already_active"
NOT_READY = "not_ready"
LOST_RACE = "lost_race"


@dataclass(frozen=True)
class ActivationOutcome:
    lease_id: str
    result: str
    lease_status: str

    @property
    def activated(self) -> bool:
        return self.result == ACTIVATED


class LeaseActivationTrigger:
    """Activates a lease once its move-in obligations are met."""

    def __init__(self, db: Session, promoter: Optional[RolePromoter] = None):
        self.db = db
        self._promoter = promoter
        self.leases = LeaseRepository(db)

    @property
    def promoter(self) -> RolePromoter:
        if self._promoter is None:
            self._promoter = get_role_promoter()
        return self._promoter

    async def evaluate(self, lease_id: str) -> ActivationOutcome:
        """Activate lease_id if it is ready; no-op otherwise.

        Raises:
            NotFound: If the lease does not exist
        """
        tracked = track_required_payments(self.db, lease_id)
        lease = self.leases.get_by_id(lease_id)

        with settlement_context(lease_id=lease.lease_id, tenant_id=lease.tenant_id):
            if lease.status == LEASE_ACTIVE:
                return ActivationOutcome(lease_id, ALREADY_ACTIVE, lease.status)

            if (
                lease.status != LEASE_AWAITING_PAYMENT
                or not lease.both_signed
                or not tracked.all_required_complete
            ):
                logger.debug(
                    "Lease not ready for activation",
                    extra={
                        "event": "lease.activation_not_ready",
                        "lease_status": lease.status,
                        "outstanding_kinds": tracked.outstanding_kinds,
                    },
                )
                return ActivationOutcome(lease_id, NOT_READY, lease.status)

            tenant_id = lease.tenant_id
            if not self.leases.activate(lease, datetime.now(timezone.utc)):
                self.db.rollback()
                current = self.leases.get_by_id(lease_id)
                result = LOST_RACE if current.status == LEASE_ACTIVE else NOT_READY
                logger.info(
                    "Lease activation CAS lost",
                    extra={"event": "lease.activation_lost", "lease_status": current.status},
                )
                return ActivationOutcome(lease_id, result, current.status)

            self.db.commit()
            logger.info("Lease activated", extra={"event": "lease.activated"})

            await self._promote(lease_id, tenant_id)
            return ActivationOutcome(lease_id, ACTIVATED, LEASE_ACTIVE)

    async def _promote(self, lease_id: str, tenant_id: str) -> None:
        # The lease stays active whatever happens here; the reaper retries pending events
        try:
            event = RolePromotionRepository(self.db).get(lease_id)
            if event is not None:
                await deliver_role_promotion(self.db, event, self.promoter)
        except Exception:
            self.db.rollback()
            logger.exception(
                "Role promotion dispatch error",
                extra={"event": "role_promotion.failed", "promoted_tenant": tenant_id},
            )
