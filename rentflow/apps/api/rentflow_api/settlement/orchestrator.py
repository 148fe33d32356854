"""Payment Orchestrator.

Drives one Payment through pending → processing → completed | failed
against the settlement gateway:

1. Claim: CAS pending → processing (failed payments first go failed → pending).
   Losing the CAS means another caller owns the attempt; the gateway is not called.
2. Execute the transfer with idempotency key "{payment_id}:{attempt}".
3. Settle: CAS processing → completed (then run the activation trigger) or
   processing → failed with a failure note. A timeout also ends in failed,
   marked as an unknown outcome, so no payment stays processing after
   initiate returns.

Gateway and store errors are translated into settlement.errors here. The
gateway is never retried automatically.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentflow_api.context import settlement_context
from rentflow_api.db.models import (
    LEASE_TERMINATED,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_KINDS,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    Lease,
    Payment,
)
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.settlement.activation import LeaseActivationTrigger
from rentflow_api.settlement.errors import (
    AlreadyInProgress,
    GatewayRejected,
    GatewayUnavailable,
    InvalidLeaseState,
    NotFound,
    PaymentAlreadyCompleted,
    ReconciliationRequired,
)
from rentflow_api.settlement.gateway import (
    SettlementGateway,
    SettlementRejected,
    SettlementUnavailable,
    get_settlement_gateway,
)
from rentflow_api.settlement.promotion import RolePromoter
from rentflow_api.settlement.wallets import resolve_destination_address, resolve_source_wallet
from rentflow_api.utils.money import MoneyError, validate_usdc_micros

logger = logging.getLogger(__name__)

UNKNOWN_OUTCOME_NOTE = "unknown — verify before retrying"

FAILURE_GATEWAY_REJECTED = "GATEWAY_REJECTED"
FAILURE_GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
FAILURE_OUTCOME_UNKNOWN = "OUTCOME_UNKNOWN"
FAILURE_STALE_PROCESSING = "STALE_PROCESSING"
FAILURE_SETTLED_AFTER_TIMEOUT = "SETTLED_AFTER_TIMEOUT"

GATEWAY_RETRY_AFTER_SEC = 30


def idempotency_key_for(payment_id: str, attempt: int) -> str:
    return f"{payment_id}:{attempt}"


class PaymentOrchestrator:
    """Executes payments against the settlement gateway.

    One orchestrator per unit of work; it shares the caller's session.
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[SettlementGateway] = None,
        promoter: Optional[RolePromoter] = None,
    ):
        self.db = db
        self.gateway = gateway or get_settlement_gateway()
        self.promoter = promoter
        self.payments = PaymentRepository(db)
        self.leases = LeaseRepository(db)

    def _get_payment(self, payment_id: str) -> Payment:
        payment = self.payments.get_by_id(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        return payment

    def _get_lease(self, lease_id: str) -> Lease:
        lease = self.leases.get_by_id(lease_id)
        if lease is None:
            raise NotFound("Lease", lease_id)
        return lease

    @staticmethod
    def _raise_busy(payment: Payment) -> None:
        if payment.status == PAYMENT_COMPLETED:
            raise PaymentAlreadyCompleted(f"Payment {payment.payment_id} is already completed")
        if payment.status == PAYMENT_FAILED and payment.transaction_ref:
            raise ReconciliationRequired(
                f"Transfer {payment.transaction_ref} was accepted for payment {payment.payment_id}; "
                "reconcile, do not retry",
                payment.transaction_ref,
            )
        raise AlreadyInProgress(
            f"Payment {payment.payment_id} is {payment.status}; poll for the outcome"
        )

    async def initiate(self, payment_id: str, source_wallet_id: Optional[str] = None) -> Payment:
        """Execute a pending or failed payment.

        Args:
            payment_id: Payment to settle
            source_wallet_id: Tenant wallet to debit (primary wallet when None)

        Returns:
            The completed Payment

        Raises:
            NotFound: Unknown payment (or its lease)
            AlreadyInProgress: Another initiate holds the payment
            PaymentAlreadyCompleted: Payment already settled
            ReconciliationRequired: A late transfer was recorded on the failed payment
            InvalidLeaseState: Lease is terminated
            InvalidWallet: Source wallet unusable
            NoWalletConfigured: No tenant primary wallet or landlord destination
            GatewayRejected: Transfer refused; payment is failed
            GatewayUnavailable: Transfer not accepted or outcome unknown; payment is failed
        """
        payment = self._get_payment(payment_id)

        with settlement_context(
            lease_id=payment.lease_id, payment_id=payment.payment_id, tenant_id=payment.tenant_id
        ):
            if payment.status not in (PAYMENT_PENDING, PAYMENT_FAILED) or payment.transaction_ref:
                self._raise_busy(payment)

            lease = self._get_lease(payment.lease_id)
            if lease.status == LEASE_TERMINATED:
                raise InvalidLeaseState(f"Lease {lease.lease_id} is terminated")

            # Resolved before any state change so configuration errors leave no trace
            source = resolve_source_wallet(self.db, payment.tenant_id, source_wallet_id)
            source_ref = source.custodial_wallet_ref
            destination = resolve_destination_address(self.db, lease)

            payment = self._claim(payment)
            attempt = payment.attempt_count
            claimed_version = payment.version
            amount = payment.amount_usdc_micros
            lease_id = payment.lease_id

            try:
                receipt = await self.gateway.execute(
                    source_wallet_ref=source_ref,
                    destination_address=destination,
                    amount_usdc_micros=amount,
                    idempotency_key=idempotency_key_for(payment_id, attempt),
                )
            except SettlementRejected as e:
                self._fail(
                    payment_id,
                    claimed_version,
                    f"{FAILURE_GATEWAY_REJECTED}:{e.error_kind}",
                    e.message,
                )
                raise GatewayRejected(e.message, e.error_kind) from e
            except SettlementUnavailable as e:
                self._fail(
                    payment_id,
                    claimed_version,
                    FAILURE_GATEWAY_UNAVAILABLE,
                    f"Settlement gateway unavailable: {e}",
                )
                raise GatewayUnavailable(
                    "Settlement gateway unavailable; safe to retry", outcome_unknown=False
                ) from e
            except Exception as e:
                # Timeouts, broken connections, anything unexpected: funds may have moved
                self._fail(
                    payment_id,
                    claimed_version,
                    FAILURE_OUTCOME_UNKNOWN,
                    f"{UNKNOWN_OUTCOME_NOTE} ({type(e).__name__}: {e})",
                )
                raise GatewayUnavailable(
                    f"Settlement outcome {UNKNOWN_OUTCOME_NOTE}", outcome_unknown=True
                ) from e

            self._complete(payment_id, claimed_version, attempt, receipt.transaction_ref)
            await self._run_activation(lease_id)
            return self._get_payment(payment_id)

    def _claim(self, payment: Payment) -> Payment:
        """Take the payment into processing or raise AlreadyInProgress."""
        payment_id = payment.payment_id

        if payment.status == PAYMENT_FAILED:
            if not self.payments.reset_for_retry(payment):
                self.db.rollback()
                self._raise_busy(self._get_payment(payment_id))
            self.db.commit()
            payment = self._get_payment(payment_id)

        try:
            won = self.payments.claim_for_processing(payment, datetime.now(timezone.utc))
            if won:
                self.db.commit()
        except IntegrityError:
            # Partial unique index: another payment of this (lease, kind) is in flight
            self.db.rollback()
            won = False

        if not won:
            self.db.rollback()
            current = self._get_payment(payment_id)
            logger.info(
                "Payment claim lost",
                extra={"event": "payment.claim_lost", "payment_status": current.status},
            )
            if current.status in (PAYMENT_PENDING, PAYMENT_FAILED):
                raise AlreadyInProgress(
                    f"Another {current.kind} payment for lease {current.lease_id} is in progress"
                )
            self._raise_busy(current)

        payment = self._get_payment(payment_id)
        logger.info(
            "Payment claimed for processing",
            extra={
                "event": "payment.claimed",
                "attempt": payment.attempt_count,
                "kind": payment.kind,
            },
        )
        return payment

    def _expect_processing(self, payment_id: str, claimed_version: int) -> Optional[Payment]:
        current = self._get_payment(payment_id)
        if current.status != PAYMENT_PROCESSING or current.version != claimed_version:
            return None
        return current

    def _complete(
        self, payment_id: str, claimed_version: int, attempt: int, transaction_ref: str
    ) -> None:
        current = self._expect_processing(payment_id, claimed_version)
        won = current is not None and self.payments.mark_completed(
            current, transaction_ref, datetime.now(timezone.utc)
        )
        if not won:
            # The stale sweep failed this payment while the gateway call was running
            self.db.rollback()
            recorded = self._record_late_settlement(payment_id, attempt, transaction_ref)
            logger.error(
                "Settled transfer could not be recorded",
                extra={
                    "event": "payment.completion_lost",
                    "transaction_ref": transaction_ref,
                    "ref_recorded": recorded,
                },
            )
            raise GatewayUnavailable(
                f"Transfer {transaction_ref} was accepted after the payment was marked failed; "
                "verify before retrying",
                outcome_unknown=True,
            )
        self.db.commit()
        logger.info(
            "Payment completed",
            extra={"event": "payment.completed", "transaction_ref": transaction_ref},
        )

    def _record_late_settlement(self, payment_id: str, attempt: int, transaction_ref: str) -> bool:
        """Keep the accepted transfer on the failed row so it is reconciled, not paid twice."""
        current = self._get_payment(payment_id)
        won = self.payments.record_late_settlement(
            current,
            attempt,
            transaction_ref,
            FAILURE_SETTLED_AFTER_TIMEOUT,
            f"Transfer {transaction_ref} accepted after timeout; reconcile, do not retry",
        )
        if not won:
            self.db.rollback()
            return False
        self.db.commit()
        return True

    def _fail(self, payment_id: str, claimed_version: int, failure_code: str, notes: str) -> None:
        current = self._expect_processing(payment_id, claimed_version)
        if current is None or not self.payments.mark_failed(current, failure_code, notes):
            self.db.rollback()
            logger.info("Payment already settled elsewhere", extra={"event": "payment.fail_lost"})
            return
        self.db.commit()
        logger.warning(
            "Payment failed",
            extra={"event": "payment.failed", "failure_code": failure_code, "failure_notes": notes},
        )

    async def _run_activation(self, lease_id: str) -> None:
        try:
            await LeaseActivationTrigger(self.db, self.promoter).evaluate(lease_id)
        except Exception:
            # Payment is already completed; activation is re-evaluated on the next completion
            self.db.rollback()
            logger.exception(
                "Lease activation check failed", extra={"event": "lease.activation_error"}
            )

    def retry(self, payment_id: str) -> Payment:
        """Move a failed payment back to pending (explicit retry).

        A pending payment is returned unchanged.

        Raises:
            NotFound: Unknown payment
            AlreadyInProgress: Payment is processing or the CAS was lost
            PaymentAlreadyCompleted: Payment already settled
            ReconciliationRequired: A late transfer was recorded on the failed payment
        """
        payment = self._get_payment(payment_id)
        with settlement_context(
            lease_id=payment.lease_id, payment_id=payment.payment_id, tenant_id=payment.tenant_id
        ):
            if payment.status == PAYMENT_PENDING:
                return payment
            if payment.status != PAYMENT_FAILED or payment.transaction_ref:
                self._raise_busy(payment)

            if not self.payments.reset_for_retry(payment):
                self.db.rollback()
                self._raise_busy(self._get_payment(payment_id))
            self.db.commit()
            logger.info("Payment reset for retry", extra={"event": "payment.retry"})
            return self._get_payment(payment_id)

    def create_payment(
        self,
        lease_id: str,
        kind: str,
        amount_usdc_micros: int,
        due_date: date,
    ) -> Payment:
        """Create an ad hoc (non-required) pending payment on a lease.

        Raises:
            NotFound: Unknown lease
            InvalidLeaseState: Lease is terminated
            MoneyError: Amount not positive or out of range
            ValueError: Unknown payment kind
        """
        lease = self._get_lease(lease_id)
        if lease.status == LEASE_TERMINATED:
            raise InvalidLeaseState(f"Lease {lease_id} is terminated")
        if kind not in PAYMENT_KINDS:
            raise ValueError(f"Unknown payment kind: {kind}")
        validate_usdc_micros(amount_usdc_micros)
        if amount_usdc_micros == 0:
            raise MoneyError("Payment amount must be positive")

        payment = self.payments.create(
            Payment(
                payment_id=str(uuid.uuid4()),
                lease_id=lease.lease_id,
                tenant_id=lease.tenant_id,
                amount_usdc_micros=amount_usdc_micros,
                kind=kind,
                status=PAYMENT_PENDING,
                required_for_activation=False,
                due_date=due_date,
            )
        )
        with settlement_context(
            lease_id=lease_id, payment_id=payment.payment_id, tenant_id=payment.tenant_id
        ):
            logger.info("Payment created", extra={"event": "payment.created", "kind": kind})
        return payment
