"""Payment repository: reads plus the guarded status state machine."""

from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import ColumnElement, case, select
from sqlalchemy.orm import Session, aliased

from rentflow_api.db.cas import update_with_version_check
from rentflow_api.db.models import (
    KIND_RENT,
    KIND_SECURITY_DEPOSIT,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    Payment,
    PaymentTransition,
)

# The only edges a Payment may ever take
ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset({
    (PAYMENT_PENDING, PAYMENT_PROCESSING),
    (PAYMENT_PROCESSING, PAYMENT_COMPLETED),
    (PAYMENT_PROCESSING, PAYMENT_FAILED),
    (PAYMENT_FAILED, PAYMENT_PENDING),
})

_KIND_ORDER = case(
    (Payment.kind == KIND_SECURITY_DEPOSIT, 0),
    (Payment.kind == KIND_RENT, 1),
    else_=2,
)


class IllegalTransitionError(Exception):
    """Raised when code asks for a Payment edge outside ALLOWED_TRANSITIONS."""

    pass


class PaymentRepository:
    """Data access for payments.

    Payment.status is written only by transition(), which pins the observed
    status and version and appends a PaymentTransition row on success.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, payment: Payment, commit: bool = True) -> Payment:
        self.db.add(payment)
        if commit:
            self.db.commit()
            self.db.refresh(payment)
        return payment

    def get_by_id(self, payment_id: str) -> Optional[Payment]:
        return self.db.get(Payment, payment_id, populate_existing=True)

    def list_for_lease(self, lease_id: str, required_only: bool = False) -> list[Payment]:
        """Payments of a lease, deposit before rent, then by due date."""
        stmt = select(Payment).where(Payment.lease_id == lease_id)
        if required_only:
            stmt = stmt.where(Payment.required_for_activation.is_(True))
        stmt = stmt.order_by(_KIND_ORDER, Payment.due_date, Payment.created_at).execution_options(
            populate_existing=True
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_transitions(self, payment_id: str) -> list[PaymentTransition]:
        stmt = (
            select(PaymentTransition)
            .where(PaymentTransition.payment_id == payment_id)
            .order_by(PaymentTransition.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def transition(
        self,
        payment: Payment,
        to_status: str,
        updates: Optional[dict[str, Any]] = None,
        extra_conditions: Sequence[ColumnElement[bool]] = (),
        detail: Optional[str] = None,
    ) -> bool:
        """CAS payment from its observed status/version to to_status.

        Args:
            payment: Payment as last read (status and version are the guard)
            to_status: Target status
            updates: Extra column updates applied with the status change
            extra_conditions: Extra WHERE predicates
            detail: Free text stored on the audit row

        Returns:
            True if this caller performed the transition

        Raises:
            IllegalTransitionError: If (payment.status, to_status) is not an allowed edge
        """
        from_status = payment.status
        expected_version = payment.version
        if (from_status, to_status) not in ALLOWED_TRANSITIONS:
            raise IllegalTransitionError(
                f"Payment {payment.payment_id}: {from_status} -> {to_status} is not allowed"
            )

        values = dict(updates or {})
        values["status"] = to_status

        won = update_with_version_check(
            self.db,
            Payment,
            Payment.payment_id,
            payment.payment_id,
            expected_version,
            values,
            [Payment.status == from_status, *extra_conditions],
        )
        if won:
            self.db.add(
                PaymentTransition(
                    payment_id=payment.payment_id,
                    from_status=from_status,
                    to_status=to_status,
                    version=expected_version + 1,
                    detail=detail,
                )
            )
        return won

    def claim_for_processing(self, payment: Payment, now: datetime) -> bool:
        """CAS pending → processing, unless another payment of the same
        (lease, kind) is already in flight."""
        other = aliased(Payment)
        in_flight = (
            select(other.payment_id)
            .where(
                other.lease_id == payment.lease_id,
                other.kind == payment.kind,
                other.status == PAYMENT_PROCESSING,
            )
            .exists()
        )
        return self.transition(
            payment,
            PAYMENT_PROCESSING,
            updates={
                "processing_started_at": now,
                "attempt_count": Payment.attempt_count + 1,
                "failure_notes": None,
                "failure_code": None,
            },
            extra_conditions=[~in_flight],
            detail=f"attempt {payment.attempt_count + 1}",
        )

    def mark_completed(self, payment: Payment, transaction_ref: str, now: datetime) -> bool:
        return self.transition(
            payment,
            PAYMENT_COMPLETED,
            updates={"transaction_ref": transaction_ref, "completed_at": now},
            detail=transaction_ref,
        )

    def mark_failed(self, payment: Payment, failure_code: str, failure_notes: str) -> bool:
        return self.transition(
            payment,
            PAYMENT_FAILED,
            updates={"failure_code": failure_code, "failure_notes": failure_notes},
            detail=failure_code,
        )

    def record_late_settlement(
        self,
        payment: Payment,
        attempt: int,
        transaction_ref: str,
        failure_code: str,
        failure_notes: str,
    ) -> bool:
        """Attach a transfer reference to a failed payment (status unchanged).

        Used when the gateway accepts a transfer after the payment was already
        failed by the stale sweep. Pinned on the attempt that made the call and
        on the row not yet carrying a reference.
        """
        if payment.status != PAYMENT_FAILED:
            return False

        won = update_with_version_check(
            self.db,
            Payment,
            Payment.payment_id,
            payment.payment_id,
            payment.version,
            {
                "transaction_ref": transaction_ref,
                "failure_code": failure_code,
                "failure_notes": failure_notes,
            },
            [
                Payment.status == PAYMENT_FAILED,
                Payment.attempt_count == attempt,
                Payment.transaction_ref.is_(None),
            ],
        )
        if won:
            self.db.add(
                PaymentTransition(
                    payment_id=payment.payment_id,
                    from_status=PAYMENT_FAILED,
                    to_status=PAYMENT_FAILED,
                    version=payment.version + 1,
                    detail=f"{failure_code}:{transaction_ref}",
                )
            )
        return won

    def reset_for_retry(self, payment: Payment) -> bool:
        """CAS failed → pending (explicit retry). Failure notes stay until the next claim.

        A failed payment carrying a transfer reference is never reset: the
        transfer went through and needs reconciling, not a second attempt.
        """
        return self.transition(
            payment,
            PAYMENT_PENDING,
            extra_conditions=[Payment.transaction_ref.is_(None)],
            detail="retry",
        )

    def scan_stale_processing(self, started_before: datetime, limit: int = 100) -> list[Payment]:
        """Payments stuck in processing since before the cutoff."""
        stmt = (
            select(Payment)
            .where(
                Payment.status == PAYMENT_PROCESSING,
                Payment.processing_started_at < started_before,
            )
            .order_by(Payment.processing_started_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

