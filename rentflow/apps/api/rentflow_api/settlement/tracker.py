"""Payment Tracker: the move-in obligation set of a lease (read-only)."""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.db.models import (
    KIND_RENT,
    KIND_SECURITY_DEPOSIT,
    LEASE_AWAITING_PAYMENT,
    PAYMENT_COMPLETED,
    Lease,
    Payment,
)
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.settlement.errors import NotFound

REQUIRED_KINDS = (KIND_SECURITY_DEPOSIT, KIND_RENT)


@dataclass(frozen=True)
class PaymentSnapshot:
    payment_id: str
    kind: str
    amount_usdc_micros: int
    status: str
    due_date: date
    completed_at: Optional[datetime]
    transaction_ref: Optional[str]
    failure_notes: Optional[str]
    failure_code: Optional[str]
    processing_started_at: Optional[datetime]
    is_overdue: bool


@dataclass(frozen=True)
class TrackerResult:
    lease_id: str
    lease_status: str
    payments: list[PaymentSnapshot]
    # Required kinds with no record yet, counted as open only while awaiting payment
    outstanding_kinds: list[str]
    all_required_complete: bool


def expected_required_kinds(lease: Lease) -> list[str]:
    """Kinds the move-in obligation set is made of for this lease.

    A zero deposit (or zero rent) means no obligation of that kind.
    """
    kinds = []
    if lease.security_deposit_usdc_micros > 0:
        kinds.append(KIND_SECURITY_DEPOSIT)
    if lease.monthly_rent_usdc_micros > 0:
        kinds.append(KIND_RENT)
    return kinds


def snapshot_payment(payment: Payment, today: date) -> PaymentSnapshot:
    return PaymentSnapshot(
        payment_id=payment.payment_id,
        kind=payment.kind,
        amount_usdc_micros=payment.amount_usdc_micros,
        status=payment.status,
        due_date=payment.due_date,
        completed_at=payment.completed_at,
        transaction_ref=payment.transaction_ref,
        failure_notes=payment.failure_notes,
        failure_code=payment.failure_code,
        processing_started_at=payment.processing_started_at,
        is_overdue=payment.due_date < today and payment.status != PAYMENT_COMPLETED,
    )


def track_required_payments(
    db: Session, lease_id: str, today: Optional[date] = None
) -> TrackerResult:
    """Required payments of a lease with their statuses.

    Args:
        db: Database session
        lease_id: Lease identifier
        today: Reference date for is_overdue (UTC today by default)

    Returns:
        TrackerResult, payments ordered deposit first then rent

    Raises:
        NotFound: If the lease does not exist
    """
    lease = LeaseRepository(db).get_by_id(lease_id)
    if lease is None:
        raise NotFound("Lease", lease_id)

    if today is None:
        today = datetime.now(timezone.utc).date()

    records = [
        p
        for p in PaymentRepository(db).list_for_lease(lease_id, required_only=True)
        if p.kind in REQUIRED_KINDS
    ]
    snapshots = [snapshot_payment(p, today) for p in records]

    present_kinds = {s.kind for s in snapshots}
    missing = [k for k in expected_required_kinds(lease) if k not in present_kinds]
    # Before awaiting_payment nothing has been generated yet, which is not a debt
    outstanding = missing if lease.status == LEASE_AWAITING_PAYMENT else []

    all_complete = not outstanding and all(s.status == PAYMENT_COMPLETED for s in snapshots)

    return TrackerResult(
        lease_id=lease.lease_id,
        lease_status=lease.status,
        payments=snapshots,
        outstanding_kinds=outstanding,
        all_required_complete=all_complete,
    )
