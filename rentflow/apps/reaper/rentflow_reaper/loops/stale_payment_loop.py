"""Stale-processing sweep.

A payment only stays in `processing` past initiate when the API process
died (or the request was cancelled) mid gateway call. After the processing
window those payments are failed with the unknown-outcome note so the
tenant sees a retry action instead of a stuck spinner.

- Scan: status='processing' AND processing_started_at < NOW - window
- Reap: CAS processing → failed, failure_code='STALE_PROCESSING'
- Interval: 30 seconds (configurable)
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.config.env import get_processing_timeout_sec
from rentflow_api.context import settlement_context
from rentflow_api.db.models import PAYMENT_PROCESSING, Payment
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.settlement.orchestrator import FAILURE_STALE_PROCESSING, UNKNOWN_OUTCOME_NOTE
from rentflow_reaper.loops.shutdown import shutdown_event

logger = logging.getLogger(__name__)


def scan_stale_payments(
    db: Session,
    processing_timeout_sec: Optional[float] = None,
    limit: int = 100,
    now: Optional[datetime] = None,
) -> list[Payment]:
    """Scan for payments stuck in processing beyond the window.

    Args:
        db: Database session
        processing_timeout_sec: Window (RENTFLOW_PROCESSING_TIMEOUT_SEC by default)
        limit: Maximum number of payments per scan
        now: Reference time (UTC now by default)

    Returns:
        Stale payments, oldest first
    """
    if processing_timeout_sec is None:
        processing_timeout_sec = get_processing_timeout_sec()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=processing_timeout_sec)

    payments = PaymentRepository(db).scan_stale_processing(cutoff, limit=limit)
    if payments:
        logger.info(
            f"Stale sweep found {len(payments)} processing payments",
            extra={"stale_count": len(payments), "scan_limit": limit},
        )
    return payments


def reap_payment(payment: Payment, db: Session) -> bool:
    """Fail a single stale payment.

    Returns:
        True if this sweep failed the payment, False if it lost the race
        (the orchestrator settled it first) or hit an error
    """
    payment_id = payment.payment_id

    with settlement_context(
        lease_id=payment.lease_id, payment_id=payment_id, tenant_id=payment.tenant_id
    ):
        try:
            if payment.status != PAYMENT_PROCESSING:
                return False
            won = PaymentRepository(db).mark_failed(
                payment,
                FAILURE_STALE_PROCESSING,
                f"Processing timed out; outcome {UNKNOWN_OUTCOME_NOTE}",
            )
            if not won:
                db.rollback()
                logger.debug(
                    f"Stale sweep lost race for payment {payment_id}",
                    extra={"outcome": "lost_race"},
                )
                return False

            db.commit()
            logger.warning(
                f"Stale payment {payment_id} marked failed",
                extra={
                    "event": "payment.failed",
                    "failure_code": FAILURE_STALE_PROCESSING,
                    "attempt": payment.attempt_count,
                    "outcome": "success",
                },
            )
            return True

        except Exception as e:
            db.rollback()
            logger.error(
                f"Stale sweep unexpected error for payment {payment_id} (will retry): {e}",
                exc_info=True,
                extra={"outcome": "unexpected_error"},
            )
            return False


def stale_payment_loop(
    db: Session,
    interval_seconds: int = 30,
    limit_per_scan: int = 100,
    processing_timeout_sec: Optional[float] = None,
    stop_after_one_iteration: bool = False,
) -> None:
    """Periodically fail payments stuck in processing.

    Args:
        db: Database session (owned by this loop's thread)
        interval_seconds: Sleep interval between scans
        limit_per_scan: Max payments per iteration
        processing_timeout_sec: Processing window override
        stop_after_one_iteration: For testing only - exit after one scan
    """
    logger.info(
        f"Stale payment loop started (interval={interval_seconds}s, limit={limit_per_scan})"
    )

    iteration = 0
    total_reaped = 0

    while not shutdown_event.is_set():
        iteration += 1
        iteration_start = time.time()

        try:
            # Clear session cache to prevent stale data in long-running process
            db.expire_all()

            stale = scan_stale_payments(
                db, processing_timeout_sec=processing_timeout_sec, limit=limit_per_scan
            )
            if stale:
                wins = sum(1 for payment in stale if reap_payment(payment, db))
                total_reaped += wins
                logger.info(
                    f"Stale sweep iteration {iteration}: {wins} failed, "
                    f"{len(stale) - wins} skipped",
                    extra={
                        "iteration": iteration,
                        "wins": wins,
                        "losses": len(stale) - wins,
                        "duration_ms": int((time.time() - iteration_start) * 1000),
                        "total_reaped": total_reaped,
                    },
                )
        except Exception as e:
            db.rollback()
            logger.error(f"Stale payment loop error in iteration {iteration}: {e}", exc_info=True)

        if stop_after_one_iteration:
            logger.info("Stale payment loop stopping after one iteration (test mode)")
            break

        # Interruptible sleep - allows immediate shutdown on signal
        shutdown_event.wait(interval_seconds)

    logger.info(
        f"Stale payment loop stopped after {iteration} iterations",
        extra={"total_iterations": iteration, "total_reaped": total_reaped},
    )
