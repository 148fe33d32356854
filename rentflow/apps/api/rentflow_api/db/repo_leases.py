"""Lease repository: reads plus guarded status transitions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from rentflow_api.db.cas import update_with_version_check
from rentflow_api.db.models import (
    LEASE_ACTIVE,
    LEASE_AWAITING_PAYMENT,
    LEASE_AWAITING_SIGNATURES,
    LEASE_TERMINATED,
    PAYMENT_COMPLETED,
    Lease,
    Payment,
    RolePromotionEvent,
)


class LeaseRepository:
    """Data access for leases. Lease.status is only written through CAS methods here."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, lease: Lease) -> Lease:
        self.db.add(lease)
        self.db.commit()
        self.db.refresh(lease)
        return lease

    def get_by_id(self, lease_id: str) -> Optional[Lease]:
        return self.db.get(Lease, lease_id, populate_existing=True)

    def record_signature(
        self,
        lease: Lease,
        *,
        tenant_signed_at: Optional[datetime] = None,
        landlord_signed_at: Optional[datetime] = None,
        landlord_payout_address: Optional[str] = None,
    ) -> bool:
        """Set one party's signature timestamp while the lease awaits signatures."""
        updates: dict = {}
        conditions = [Lease.status == LEASE_AWAITING_SIGNATURES]
        if tenant_signed_at is not None:
            updates["tenant_signed_at"] = tenant_signed_at
            conditions.append(Lease.tenant_signed_at.is_(None))
        if landlord_signed_at is not None:
            updates["landlord_signed_at"] = landlord_signed_at
            conditions.append(Lease.landlord_signed_at.is_(None))
            if landlord_payout_address:
                updates["landlord_payout_address"] = landlord_payout_address
        if not updates:
            raise ValueError("record_signature needs a tenant or landlord timestamp")

        return update_with_version_check(
            self.db, Lease, Lease.lease_id, lease.lease_id, lease.version, updates, conditions
        )

    def open_for_payment(self, lease: Lease) -> bool:
        """CAS awaiting_signatures → awaiting_payment once both parties signed."""
        return update_with_version_check(
            self.db,
            Lease,
            Lease.lease_id,
            lease.lease_id,
            lease.version,
            {"status": LEASE_AWAITING_PAYMENT},
            [
                Lease.status == LEASE_AWAITING_SIGNATURES,
                Lease.tenant_signed_at.is_not(None),
                Lease.landlord_signed_at.is_not(None),
            ],
        )

    def activate(self, lease: Lease, now: datetime) -> bool:
        """CAS awaiting_payment → active and enqueue the role promotion event.

        The WHERE clause re-asserts the activation preconditions at the
        instant of the write: both signatures present and no required
        payment short of completed. Guarded on prior status only, so two
        racing payment completions serialise here and exactly one wins.
        """
        unpaid_required = (
            select(Payment.payment_id)
            .where(
                and_(
                    Payment.lease_id == lease.lease_id,
                    Payment.required_for_activation.is_(True),
                    Payment.status != PAYMENT_COMPLETED,
                )
            )
            .exists()
        )
        won = self.db.execute(
            update(Lease)
            .where(
                Lease.lease_id == lease.lease_id,
                Lease.status == LEASE_AWAITING_PAYMENT,
                Lease.tenant_signed_at.is_not(None),
                Lease.landlord_signed_at.is_not(None),
                ~unpaid_required,
            )
            .values(
                status=LEASE_ACTIVE,
                activated_at=now,
                updated_at=now,
                version=Lease.version + 1,
            )
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        if won:
            self.db.add(
                RolePromotionEvent(lease_id=lease.lease_id, tenant_id=lease.tenant_id, created_at=now)
            )
        return won

    def terminate(self, lease: Lease, now: datetime) -> bool:
        """CAS any non-terminated status → terminated."""
        return update_with_version_check(
            self.db,
            Lease,
            Lease.lease_id,
            lease.lease_id,
            lease.version,
            {"status": LEASE_TERMINATED, "terminated_at": now},
            [Lease.status != LEASE_TERMINATED],
        )
