"""Dashboard read model: per-lease payment projection polled by the UI."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.config.env import get_processing_timeout_sec
from rentflow_api.db.models import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PROCESSING
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.settlement.tracker import PaymentSnapshot, track_required_payments
from rentflow_api.utils.money import format_usdc_micros


@dataclass(frozen=True)
class DashboardPayment:
    payment_id: str
    kind: str
    amount: str
    amount_usdc_micros: int
    status: str
    display_status: str
    due_date: date
    is_overdue: bool
    is_stale: bool
    completed_at: Optional[datetime]
    transaction_ref: Optional[str]
    failure_notes: Optional[str]
    can_retry: bool


@dataclass(frozen=True)
class LeaseDashboard:
    lease_id: str
    lease_status: str
    tenant_signed: bool
    landlord_signed: bool
    all_required_complete: bool
    required_payments: list[DashboardPayment]
    outstanding_kinds: list[str]
    total_due: str
    total_paid: str


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _project(snapshot: PaymentSnapshot, stale_before: datetime) -> DashboardPayment:
    is_stale = (
        snapshot.status == PAYMENT_PROCESSING
        and snapshot.processing_started_at is not None
        and _as_utc(snapshot.processing_started_at) < stale_before
    )
    display_status = PAYMENT_FAILED if is_stale else snapshot.status
    failure_notes = snapshot.failure_notes
    if is_stale and not failure_notes:
        failure_notes = "Processing timed out; outcome unknown — verify before retrying"

    return DashboardPayment(
        payment_id=snapshot.payment_id,
        kind=snapshot.kind,
        amount=format_usdc_micros(snapshot.amount_usdc_micros),
        amount_usdc_micros=snapshot.amount_usdc_micros,
        status=snapshot.status,
        display_status=display_status,
        due_date=snapshot.due_date,
        is_overdue=snapshot.is_overdue,
        is_stale=is_stale,
        completed_at=snapshot.completed_at,
        transaction_ref=snapshot.transaction_ref,
        failure_notes=failure_notes,
        # A failed row holding a transfer ref settled late and needs reconciling
        can_retry=snapshot.status == PAYMENT_FAILED and snapshot.transaction_ref is None,
    )


def build_lease_dashboard(
    db: Session, lease_id: str, now: Optional[datetime] = None
) -> LeaseDashboard:
    """Project a lease's required payments for presentation.

    Raises:
        NotFound: If the lease does not exist
    """
    now = now or datetime.now(timezone.utc)
    tracked = track_required_payments(db, lease_id, today=now.date())
    lease = LeaseRepository(db).get_by_id(lease_id)

    stale_before = now - timedelta(seconds=get_processing_timeout_sec())
    payments = [_project(s, stale_before) for s in tracked.payments]

    total_due = sum(p.amount_usdc_micros for p in payments if p.status != PAYMENT_COMPLETED)
    total_paid = sum(p.amount_usdc_micros for p in payments if p.status == PAYMENT_COMPLETED)

    return LeaseDashboard(
        lease_id=lease.lease_id,
        lease_status=lease.status,
        tenant_signed=lease.tenant_signed_at is not None,
        landlord_signed=lease.landlord_signed_at is not None,
        all_required_complete=tracked.all_required_complete,
        required_payments=payments,
        outstanding_kinds=tracked.outstanding_kinds,
        total_due=format_usdc_micros(total_due),
        total_paid=format_usdc_micros(total_paid),
    )
