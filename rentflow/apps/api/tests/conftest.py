"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

import os

# Module-level engine in rentflow_api.db.session must not touch a real database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rentflow_api.db.models import (
    KIND_RENT,
    KIND_SECURITY_DEPOSIT,
    LEASE_AWAITING_PAYMENT,
    PAYMENT_PENDING,
    WALLET_CUSTODIAL,
    Base,
    Lease,
    Payment,
    Wallet,
)
from rentflow_api.db.repo_leases import LeaseRepository
from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.db.session import get_db
from rentflow_api.main import app
from rentflow_api.settlement.gateway import SettlementReceipt, get_settlement_gateway
from rentflow_api.settlement.promotion import get_role_promoter
from rentflow_api.utils.money import parse_usdc_string

TEST_DATABASE_URL = "sqlite:///:memory:"


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeGateway:
    """Settlement gateway double.

    outcomes: consumed one per call; an exception instance is raised, a
    SettlementReceipt is returned, None means default success.
    hold: optional asyncio.Event the call waits on (keeps the payment processing).
    on_call: optional coroutine run inside the call (re-entrancy tests).
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.outcomes: list[Any] = []
        self.hold = None
        self.on_call = None

    async def execute(self, **kwargs: Any) -> SettlementReceipt:
        self.calls.append(kwargs)
        if self.on_call is not None:
            await self.on_call(kwargs)
        if self.hold is not None:
            await self.hold.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return SettlementReceipt(transaction_ref=f"0xtx{len(self.calls):04d}", status="complete")
        return outcome


class RecordingPromoter:
    """Role promoter double; fails while fail_with is set."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None

    async def promote_to_tenant(self, tenant_id: str, lease_id: str) -> None:
        self.calls.append((tenant_id, lease_id))
        if self.fail_with is not None:
            raise self.fail_with


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Create a fresh in-memory SQLite ledger for each test.
    """
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def promoter() -> RecordingPromoter:
    return RecordingPromoter()


@pytest.fixture
def test_client(db_session: Session, fake_gateway: FakeGateway, promoter: RecordingPromoter):
    """TestClient with db_session, gateway and promoter dependency overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close - db_session fixture handles it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settlement_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_role_promoter] = lambda: promoter
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


# ============================================================================
# Ledger factories
# ============================================================================


@pytest.fixture
def make_lease(db_session: Session):
    """Factory for leases (defaults: signed, awaiting payment, $2000 deposit, $1500 rent)."""

    def _make(
        deposit: str = "2000.00",
        rent: str = "1500.00",
        status: str = LEASE_AWAITING_PAYMENT,
        tenant_signed: bool = True,
        landlord_signed: bool = True,
        payout_address: Optional[str] = "LandlordPayoutAddr1111",
        start_date: Optional[date] = None,
        tenant_id: Optional[str] = None,
        landlord_id: Optional[str] = None,
    ) -> Lease:
        signed_at = datetime.now(timezone.utc) - timedelta(days=1)
        lease = Lease(
            lease_id=f"lease_{uuid.uuid4().hex[:8]}",
            tenant_id=tenant_id or f"tenant_{uuid.uuid4().hex[:8]}",
            landlord_id=landlord_id or f"landlord_{uuid.uuid4().hex[:8]}",
            property_id=f"property_{uuid.uuid4().hex[:8]}",
            monthly_rent_usdc_micros=parse_usdc_string(rent),
            security_deposit_usdc_micros=parse_usdc_string(deposit),
            start_date=start_date or date.today() + timedelta(days=14),
            tenant_signed_at=signed_at if tenant_signed else None,
            landlord_signed_at=signed_at if landlord_signed else None,
            landlord_payout_address=payout_address,
            status=status,
        )
        return LeaseRepository(db_session).create(lease)

    return _make


@pytest.fixture
def make_payment(db_session: Session):
    """Factory for payments on an existing lease."""

    def _make(
        lease: Lease,
        kind: str = KIND_RENT,
        amount: Optional[str] = None,
        status: str = PAYMENT_PENDING,
        required: bool = True,
        due_date: Optional[date] = None,
        **fields: Any,
    ) -> Payment:
        if amount is None:
            micros = (
                lease.security_deposit_usdc_micros
                if kind == KIND_SECURITY_DEPOSIT
                else lease.monthly_rent_usdc_micros
            )
        else:
            micros = parse_usdc_string(amount)
        payment = Payment(
            payment_id=f"pay_{uuid.uuid4().hex[:8]}",
            lease_id=lease.lease_id,
            tenant_id=lease.tenant_id,
            amount_usdc_micros=micros,
            kind=kind,
            status=status,
            required_for_activation=required,
            due_date=due_date or lease.start_date,
            **fields,
        )
        return PaymentRepository(db_session).create(payment)

    return _make


@pytest.fixture
def make_wallet(db_session: Session):
    """Factory for wallets (custodial + primary by default)."""

    def _make(
        owner_id: str,
        kind: str = WALLET_CUSTODIAL,
        is_primary: bool = True,
        address: Optional[str] = None,
    ) -> Wallet:
        wallet = Wallet(
            wallet_id=f"wal_{uuid.uuid4().hex[:8]}",
            owner_id=owner_id,
            address=address or f"Addr{uuid.uuid4().hex[:16]}",
            kind=kind,
            custodial_wallet_ref=f"circle-{uuid.uuid4().hex[:8]}" if kind == WALLET_CUSTODIAL else None,
            is_primary=is_primary,
        )
        db_session.add(wallet)
        db_session.commit()
        db_session.refresh(wallet)
        return wallet

    return _make


@pytest.fixture
def move_in(make_lease, make_payment, make_wallet) -> SimpleNamespace:
    """Signed lease awaiting payment with pending deposit + first rent and a tenant wallet."""
    lease = make_lease()
    deposit = make_payment(lease, kind=KIND_SECURITY_DEPOSIT)
    rent = make_payment(lease, kind=KIND_RENT)
    wallet = make_wallet(lease.tenant_id)
    return SimpleNamespace(
        lease_id=lease.lease_id,
        tenant_id=lease.tenant_id,
        deposit_id=deposit.payment_id,
        rent_id=rent.payment_id,
        wallet_id=wallet.wallet_id,
        wallet_ref=wallet.custodial_wallet_ref,
    )
