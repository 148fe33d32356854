"""Payment state machine tests: allowed edges, CAS guards, audit trail."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from rentflow_api.db.models import (
    KIND_RENT,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_STATUSES,
    PaymentTransition,
)
from rentflow_api.db.repo_payments import (
    ALLOWED_TRANSITIONS,
    IllegalTransitionError,
    PaymentRepository,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _stale_copy(payment):
    """What a second reader saw before the row moved."""
    return SimpleNamespace(
        payment_id=payment.payment_id,
        lease_id=payment.lease_id,
        kind=payment.kind,
        status=payment.status,
        version=payment.version,
        attempt_count=payment.attempt_count,
    )


@pytest.mark.parametrize(
    "from_status,to_status",
    [
        (a, b)
        for a in PAYMENT_STATUSES
        for b in PAYMENT_STATUSES
        if (a, b) not in ALLOWED_TRANSITIONS
    ],
)
def test_disallowed_edges_raise(db_session, make_lease, make_payment, from_status, to_status):
    payment = make_payment(make_lease(), status=from_status)

    with pytest.raises(IllegalTransitionError):
        PaymentRepository(db_session).transition(payment, to_status)


def test_completed_is_terminal():
    assert not [edge for edge in ALLOWED_TRANSITIONS if edge[0] == PAYMENT_COMPLETED]


def test_full_lifecycle_audit_trail(db_session, make_lease, make_payment):
    payment = make_payment(make_lease(), kind=KIND_RENT)
    repo = PaymentRepository(db_session)

    assert repo.claim_for_processing(payment, NOW)
    db_session.commit()
    assert repo.mark_failed(repo.get_by_id(payment.payment_id), "GATEWAY_REJECTED", "no funds")
    db_session.commit()
    assert repo.reset_for_retry(repo.get_by_id(payment.payment_id))
    db_session.commit()
    assert repo.claim_for_processing(repo.get_by_id(payment.payment_id), NOW)
    db_session.commit()
    assert repo.mark_completed(repo.get_by_id(payment.payment_id), "0xfeed", NOW)
    db_session.commit()

    final = repo.get_by_id(payment.payment_id)
    assert final.status == PAYMENT_COMPLETED
    assert final.version == 5
    assert final.attempt_count == 2
    assert final.transaction_ref == "0xfeed"
    # A fresh claim clears the previous failure
    assert final.failure_code is None

    edges = [(t.from_status, t.to_status) for t in repo.list_transitions(payment.payment_id)]
    assert edges == [
        (PAYMENT_PENDING, PAYMENT_PROCESSING),
        (PAYMENT_PROCESSING, PAYMENT_FAILED),
        (PAYMENT_FAILED, PAYMENT_PENDING),
        (PAYMENT_PENDING, PAYMENT_PROCESSING),
        (PAYMENT_PROCESSING, PAYMENT_COMPLETED),
    ]
    assert set(edges) <= ALLOWED_TRANSITIONS
    versions = [t.version for t in repo.list_transitions(payment.payment_id)]
    assert versions == [1, 2, 3, 4, 5]


def test_stale_claim_loses(db_session, make_lease, make_payment):
    payment = make_payment(make_lease())
    repo = PaymentRepository(db_session)
    stale = _stale_copy(payment)

    assert repo.claim_for_processing(payment, NOW) is True
    db_session.commit()
    assert repo.claim_for_processing(stale, NOW) is False
    db_session.commit()

    current = repo.get_by_id(payment.payment_id)
    assert current.attempt_count == 1
    assert len(repo.list_transitions(payment.payment_id)) == 1


def test_losing_writer_leaves_no_audit_row(db_session, make_lease, make_payment):
    payment = make_payment(make_lease(), status=PAYMENT_PROCESSING, processing_started_at=NOW)
    repo = PaymentRepository(db_session)
    stale = _stale_copy(payment)

    assert repo.mark_completed(payment, "0x1", NOW) is True
    db_session.commit()
    # e.g. the stale sweep racing a completion it did not see
    assert repo.mark_failed(stale, "STALE_PROCESSING", "timed out") is False
    db_session.commit()

    assert repo.get_by_id(payment.payment_id).status == PAYMENT_COMPLETED
    rows = db_session.execute(
        select(PaymentTransition).where(PaymentTransition.payment_id == payment.payment_id)
    ).scalars().all()
    assert [r.to_status for r in rows] == [PAYMENT_COMPLETED]


def test_claim_refused_while_same_kind_in_flight(db_session, make_lease, make_payment):
    lease = make_lease()
    make_payment(lease, kind=KIND_RENT, status=PAYMENT_PROCESSING, processing_started_at=NOW)
    second = make_payment(lease, kind=KIND_RENT, required=False)

    assert PaymentRepository(db_session).claim_for_processing(second, NOW) is False
    db_session.commit()
    assert PaymentRepository(db_session).get_by_id(second.payment_id).status == PAYMENT_PENDING


def test_scan_stale_processing(db_session, make_lease, make_payment):
    lease = make_lease()
    old = make_payment(
        lease,
        kind=KIND_RENT,
        status=PAYMENT_PROCESSING,
        processing_started_at=datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc),
    )
    make_payment(lease, kind="security_deposit", status=PAYMENT_PROCESSING, processing_started_at=NOW)

    stale = PaymentRepository(db_session).scan_stale_processing(
        datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc)
    )

    assert [p.payment_id for p in stale] == [old.payment_id]
