"""Stale-processing sweep tests.

Coverage:
  T1) Payment processing beyond the window → failed with the unknown-outcome note
  T2) Payment inside the window is untouched
  T3) Sweep loses the race to a completion → no change, no audit row
  T4) Cancelled initiate leaves processing; the sweep fails it and retry works
  T5) Loop runs one iteration in test mode
"""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rentflow_api.db.models import (
    KIND_SECURITY_DEPOSIT,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
)
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.settlement.gateway import SettlementReceipt
from rentflow_api.settlement.orchestrator import FAILURE_STALE_PROCESSING, PaymentOrchestrator
from rentflow_reaper.loops.stale_payment_loop import (
    reap_payment,
    scan_stale_payments,
    stale_payment_loop,
)


def _status(db_session, payment_id):
    return PaymentRepository(db_session).get_by_id(payment_id)


def test_stale_payment_is_failed(db_session, make_payment):
    stale = make_payment(started_seconds_ago=3600)

    found = scan_stale_payments(db_session, processing_timeout_sec=300)
    assert [p.payment_id for p in found] == [stale.payment_id]

    assert reap_payment(found[0], db_session) is True

    payment = _status(db_session, stale.payment_id)
    assert payment.status == PAYMENT_FAILED
    assert payment.failure_code == FAILURE_STALE_PROCESSING
    assert "verify before retrying" in payment.failure_notes


def test_fresh_processing_payment_untouched(db_session, make_payment):
    fresh = make_payment(started_seconds_ago=10)

    assert scan_stale_payments(db_session, processing_timeout_sec=300) == []
    assert _status(db_session, fresh.payment_id).status == PAYMENT_PROCESSING


def test_sweep_loses_race_to_completion(db_session, make_payment):
    stale = make_payment(started_seconds_ago=3600)
    seen_by_sweep = SimpleNamespace(
        payment_id=stale.payment_id,
        lease_id=stale.lease_id,
        tenant_id=stale.tenant_id,
        kind=stale.kind,
        status=stale.status,
        version=stale.version,
        attempt_count=stale.attempt_count,
    )

    repo = PaymentRepository(db_session)
    assert repo.mark_completed(stale, "0xlate", datetime.now(timezone.utc))
    db_session.commit()

    assert reap_payment(seen_by_sweep, db_session) is False

    payment = _status(db_session, stale.payment_id)
    assert payment.status == PAYMENT_COMPLETED
    assert [t.to_status for t in repo.list_transitions(stale.payment_id)] == [PAYMENT_COMPLETED]


class _CancellingGateway:
    def __init__(self) -> None:
        self.calls = []
        self.cancel_next = True

    async def execute(self, **kwargs):
        self.calls.append(kwargs)
        if self.cancel_next:
            self.cancel_next = False
            raise asyncio.CancelledError()
        return SettlementReceipt(transaction_ref="0xretry", status="complete")


@pytest.mark.asyncio
async def test_cancelled_initiate_is_recovered_by_sweep(db_session, make_payment, promoter):
    payment = make_payment(kind=KIND_SECURITY_DEPOSIT, status=PAYMENT_PENDING)
    gateway = _CancellingGateway()
    orchestrator = PaymentOrchestrator(db_session, gateway=gateway, promoter=promoter)

    with pytest.raises(asyncio.CancelledError):
        await orchestrator.initiate(payment.payment_id)
    assert _status(db_session, payment.payment_id).status == PAYMENT_PROCESSING

    later = datetime.now(timezone.utc) + timedelta(hours=1)
    stale = scan_stale_payments(db_session, processing_timeout_sec=300, now=later)
    assert [p.payment_id for p in stale] == [payment.payment_id]
    assert reap_payment(stale[0], db_session) is True
    assert _status(db_session, payment.payment_id).status == PAYMENT_FAILED

    settled = await orchestrator.initiate(payment.payment_id)

    assert settled.status == PAYMENT_COMPLETED
    assert settled.attempt_count == 2
    assert [c["idempotency_key"] for c in gateway.calls] == [
        f"{payment.payment_id}:1",
        f"{payment.payment_id}:2",
    ]


def test_loop_single_iteration(db_session, make_payment):
    stale = make_payment(started_seconds_ago=3600)
    fresh = make_payment(kind=KIND_SECURITY_DEPOSIT, started_seconds_ago=5)

    stale_payment_loop(
        db_session,
        interval_seconds=1,
        processing_timeout_sec=300,
        stop_after_one_iteration=True,
    )

    assert _status(db_session, stale.payment_id).status == PAYMENT_FAILED
    assert _status(db_session, fresh.payment_id).status == PAYMENT_PROCESSING
