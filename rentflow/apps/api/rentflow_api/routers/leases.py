"""Lease endpoints: signatures, termination, required payments, dashboard.

Errors are raised as settlement.errors.PaymentError subclasses and rendered
as problem details by the app-level handler.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rentflow_api.db.session import get_db
from rentflow_api.schemas import (
    CreatePaymentRequest,
    LeaseDashboardResponse,
    LeaseResponse,
    PaymentResponse,
    RequiredPaymentInfo,
    RequiredPaymentsResponse,
    SignatureRequest,
)
from rentflow_api.settlement.gateway import SettlementGateway, get_settlement_gateway
from rentflow_api.settlement.lifecycle import record_signature, terminate_lease
from rentflow_api.settlement.orchestrator import PaymentOrchestrator
from rentflow_api.settlement.read_model import build_lease_dashboard
from rentflow_api.settlement.tracker import track_required_payments
from rentflow_api.utils.money import format_usdc_micros, parse_usdc_string

router = APIRouter(prefix="/v1/leases", tags=["leases"])
logger = logging.getLogger(__name__)


@router.get("/{lease_id}/required-payments", response_model=RequiredPaymentsResponse)
async def get_required_payments(
    lease_id: str, db: Session = Depends(get_db)
) -> RequiredPaymentsResponse:
    """Move-in obligations of a lease and whether all are complete."""
    tracked = track_required_payments(db, lease_id)
    return RequiredPaymentsResponse(
        lease_id=tracked.lease_id,
        lease_status=tracked.lease_status,
        all_required_complete=tracked.all_required_complete,
        outstanding_kinds=tracked.outstanding_kinds,
        payments=[
            RequiredPaymentInfo(
                payment_id=s.payment_id,
                kind=s.kind,
                amount=format_usdc_micros(s.amount_usdc_micros),
                status=s.status,
                due_date=s.due_date,
                is_overdue=s.is_overdue,
                completed_at=s.completed_at,
                transaction_ref=s.transaction_ref,
                failure_notes=s.failure_notes,
            )
            for s in tracked.payments
        ],
    )


@router.get("/{lease_id}/dashboard", response_model=LeaseDashboardResponse)
async def get_lease_dashboard(
    lease_id: str, db: Session = Depends(get_db)
) -> LeaseDashboardResponse:
    """Read-only projection polled by tenant and manager dashboards."""
    dashboard = build_lease_dashboard(db, lease_id)
    return LeaseDashboardResponse(
        lease_id=dashboard.lease_id,
        lease_status=dashboard.lease_status,
        tenant_signed=dashboard.tenant_signed,
        landlord_signed=dashboard.landlord_signed,
        all_required_complete=dashboard.all_required_complete,
        outstanding_kinds=dashboard.outstanding_kinds,
        total_due=dashboard.total_due,
        total_paid=dashboard.total_paid,
        required_payments=[
            RequiredPaymentInfo(
                payment_id=p.payment_id,
                kind=p.kind,
                amount=p.amount,
                status=p.status,
                display_status=p.display_status,
                due_date=p.due_date,
                is_overdue=p.is_overdue,
                completed_at=p.completed_at,
                transaction_ref=p.transaction_ref,
                failure_notes=p.failure_notes,
                can_retry=p.can_retry,
            )
            for p in dashboard.required_payments
        ],
    )


@router.post("/{lease_id}/signatures", response_model=LeaseResponse)
async def sign_lease(
    lease_id: str, request: SignatureRequest, db: Session = Depends(get_db)
) -> LeaseResponse:
    """Record a tenant or landlord signature.

    The second signature opens the lease for payment and creates the
    required deposit and first-rent payments.
    """
    lease = record_signature(db, lease_id, request.party, payout_address=request.payout_address)
    return LeaseResponse.model_validate(lease)


@router.post("/{lease_id}/terminate", response_model=LeaseResponse)
async def terminate(lease_id: str, db: Session = Depends(get_db)) -> LeaseResponse:
    lease = terminate_lease(db, lease_id)
    return LeaseResponse.model_validate(lease)


@router.post(
    "/{lease_id}/payments", status_code=status.HTTP_201_CREATED, response_model=PaymentResponse
)
async def create_payment(
    lease_id: str,
    request: CreatePaymentRequest,
    db: Session = Depends(get_db),
    gateway: SettlementGateway = Depends(get_settlement_gateway),
) -> PaymentResponse:
    """Create an ad hoc pending payment (late fee, extra rent, ...)."""
    amount_micros = parse_usdc_string(request.amount)
    payment = PaymentOrchestrator(db, gateway=gateway).create_payment(
        lease_id, request.kind, amount_micros, request.due_date
    )
    return PaymentResponse.from_model(payment)
