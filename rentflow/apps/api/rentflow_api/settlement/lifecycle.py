"""Lease lifecycle: signatures, required payment generation, termination."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.context import settlement_context
from rentflow_api.db.models import (
    KIND_RENT,
    KIND_SECURITY_DEPOSIT,
    LEASE_AWAITING_SIGNATURES,
    LEASE_TERMINATED,
    PAYMENT_PENDING,
    Lease,
    Payment,
)
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.settlement.errors import InvalidLeaseState, NotFound
from rentflow_api.settlement.tracker import expected_required_kinds

logger = logging.getLogger(__name__)

PARTY_TENANT = "tenant"
PARTY_LANDLORD = "landlord"
PARTIES = (PARTY_TENANT, PARTY_LANDLORD)


def _required_payments(lease: Lease) -> list[Payment]:
    amounts = {
        KIND_SECURITY_DEPOSIT: lease.security_deposit_usdc_micros,
        KIND_RENT: lease.monthly_rent_usdc_micros,
    }
    return [
        Payment(
            payment_id=str(uuid.uuid4()),
            lease_id=lease.lease_id,
            tenant_id=lease.tenant_id,
            amount_usdc_micros=amounts[kind],
            kind=kind,
            status=PAYMENT_PENDING,
            required_for_activation=True,
            due_date=lease.start_date,
        )
        for kind in expected_required_kinds(lease)
    ]


def record_signature(
    db: Session, lease_id: str, party: str, payout_address: Optional[str] = None
) -> Lease:
    """Record one party's signature.

    Signing twice is a no-op. When both parties have signed, the lease moves
    to awaiting_payment and its required payments (security deposit, first
    month's rent) are created in the same transaction.

    Args:
        db: Database session
        lease_id: Lease identifier
        party: "tenant" or "landlord"
        payout_address: Landlord's settlement address (landlord only)

    Raises:
        NotFound: If the lease does not exist
        InvalidLeaseState: If the lease no longer awaits signatures
        ValueError: If party is unknown
    """
    if party not in PARTIES:
        raise ValueError(f"Unknown signing party: {party}")

    leases = LeaseRepository(db)
    lease = leases.get_by_id(lease_id)
    if lease is None:
        raise NotFound("Lease", lease_id)

    with settlement_context(lease_id=lease_id, tenant_id=lease.tenant_id):
        already_signed = (
            lease.tenant_signed_at if party == PARTY_TENANT else lease.landlord_signed_at
        ) is not None

        if not already_signed:
            if lease.status != LEASE_AWAITING_SIGNATURES:
                raise InvalidLeaseState(f"Lease {lease_id} is {lease.status}; signatures are closed")
            now = datetime.now(timezone.utc)
            if party == PARTY_TENANT:
                won = leases.record_signature(lease, tenant_signed_at=now)
            else:
                won = leases.record_signature(
                    lease, landlord_signed_at=now, landlord_payout_address=payout_address
                )
            if not won:
                db.rollback()
                raise InvalidLeaseState(f"Lease {lease_id} changed concurrently; reload and retry")
            db.commit()
            logger.info("Lease signed", extra={"event": "lease.signed", "party": party})
            lease = leases.get_by_id(lease_id)

        if lease.status == LEASE_AWAITING_SIGNATURES and lease.both_signed:
            _open_for_payment(db, leases, lease)
            lease = leases.get_by_id(lease_id)

    return lease


def _open_for_payment(db: Session, leases: LeaseRepository, lease: Lease) -> None:
    # Losing this CAS means a concurrent signer already opened the lease
    if not leases.open_for_payment(lease):
        db.rollback()
        return

    payments = PaymentRepository(db)
    generated = _required_payments(lease)
    for payment in generated:
        payments.create(payment, commit=False)
    db.commit()

    logger.info(
        "Lease awaiting payment",
        extra={
            "event": "lease.awaiting_payment",
            "required_kinds": [p.kind for p in generated],
        },
    )


def terminate_lease(db: Session, lease_id: str) -> Lease:
    """Terminate a lease; terminated leases accept no new payments.

    Raises:
        NotFound: If the lease does not exist
        InvalidLeaseState: If already terminated or changed concurrently
    """
    leases = LeaseRepository(db)
    lease = leases.get_by_id(lease_id)
    if lease is None:
        raise NotFound("Lease", lease_id)
    if lease.status == LEASE_TERMINATED:
        raise InvalidLeaseState(f"Lease {lease_id} is already terminated")

    if not leases.terminate(lease, datetime.now(timezone.utc)):
        db.rollback()
        raise InvalidLeaseState(f"Lease {lease_id} changed concurrently; reload and retry")
    db.commit()

    with settlement_context(lease_id=lease_id, tenant_id=lease.tenant_id):
        logger.info("Lease terminated", extra={"event": "lease.terminated"})
    return leases.get_by_id(lease_id)
