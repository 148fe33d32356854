"""Pytest configuration and fixtures for reaper tests."""

import os
import sys
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add API and reaper paths for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "api"))
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from rentflow_api.db.models import (
    KIND_RENT,
    KIND_SECURITY_DEPOSIT,
    LEASE_AWAITING_PAYMENT,
    PAYMENT_PROCESSING,
    WALLET_CUSTODIAL,
    Base,
    Lease,
    Payment,
    Wallet,
)
from rentflow_reaper.loops.shutdown import shutdown_event

TEST_DATABASE_URL = "sqlite:///:memory:"


class RecordingPromoter:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_with = None

    async def promote_to_tenant(self, tenant_id: str, lease_id: str) -> None:
        self.calls.append((tenant_id, lease_id))
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture(scope="function")
def db_session() -> Session:
    """In-memory SQLite ledger shared by every connection of the test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def _reset_shutdown_event():
    shutdown_event.clear()
    yield
    shutdown_event.clear()


@pytest.fixture
def promoter() -> RecordingPromoter:
    return RecordingPromoter()


@pytest.fixture
def lease(db_session: Session) -> Lease:
    """Signed lease awaiting payment, tenant has a primary custodial wallet."""
    signed_at = datetime.now(timezone.utc) - timedelta(days=1)
    lease = Lease(
        lease_id=f"lease_{uuid.uuid4().hex[:8]}",
        tenant_id=f"tenant_{uuid.uuid4().hex[:8]}",
        landlord_id=f"landlord_{uuid.uuid4().hex[:8]}",
        property_id="property_1",
        monthly_rent_usdc_micros=1_500_000_000,
        security_deposit_usdc_micros=2_000_000_000,
        start_date=date.today() + timedelta(days=14),
        tenant_signed_at=signed_at,
        landlord_signed_at=signed_at,
        landlord_payout_address="LandlordPayoutAddr1111",
        status=LEASE_AWAITING_PAYMENT,
    )
    wallet = Wallet(
        wallet_id=f"wal_{uuid.uuid4().hex[:8]}",
        owner_id=lease.tenant_id,
        address="TenantAddr1",
        kind=WALLET_CUSTODIAL,
        custodial_wallet_ref="circle-tenant-1",
        is_primary=True,
    )
    db_session.add_all([lease, wallet])
    db_session.commit()
    return lease


@pytest.fixture
def make_payment(db_session: Session, lease: Lease):
    """Factory for payments on the lease; processing_started_at as an age in seconds."""

    def _make(
        kind: str = KIND_RENT,
        status: str = PAYMENT_PROCESSING,
        started_seconds_ago: float = 3600,
    ) -> Payment:
        amount = (
            lease.security_deposit_usdc_micros
            if kind == KIND_SECURITY_DEPOSIT
            else lease.monthly_rent_usdc_micros
        )
        payment = Payment(
            payment_id=f"pay_{uuid.uuid4().hex[:8]}",
            lease_id=lease.lease_id,
            tenant_id=lease.tenant_id,
            amount_usdc_micros=amount,
            kind=kind,
            status=status,
            required_for_activation=True,
            due_date=lease.start_date,
            attempt_count=1 if status == PAYMENT_PROCESSING else 0,
            processing_started_at=(
                datetime.now(timezone.utc) - timedelta(seconds=started_seconds_ago)
                if status == PAYMENT_PROCESSING
                else None
            ),
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _make
