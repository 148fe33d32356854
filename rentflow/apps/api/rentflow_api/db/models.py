"""SQLAlchemy ORM Models for the RentFlow ledger store."""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    BIGINT,
    BOOLEAN,
    DATE,
    INTEGER,
    TEXT,
    TIMESTAMP,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Status vocabularies
# ============================================================================

LEASE_AWAITING_SIGNATURES = "awaiting_signatures"
LEASE_AWAITING_PAYMENT = "awaiting_payment"
LEASE_ACTIVE = "active"
LEASE_TERMINATED = "terminated"
LEASE_STATUSES = (
    LEASE_AWAITING_SIGNATURES,
    LEASE_AWAITING_PAYMENT,
    LEASE_ACTIVE,
    LEASE_TERMINATED,
)

PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_COMPLETED, PAYMENT_FAILED)

KIND_SECURITY_DEPOSIT = "security_deposit"
KIND_RENT = "rent"
KIND_LATE_FEE = "late_fee"
KIND_OTHER = "other"
PAYMENT_KINDS = (KIND_SECURITY_DEPOSIT, KIND_RENT, KIND_LATE_FEE, KIND_OTHER)

WALLET_CUSTODIAL = "custodial"
WALLET_EXTERNAL = "external"
WALLET_KINDS = (WALLET_CUSTODIAL, WALLET_EXTERNAL)

PROMOTION_PENDING = "pending"
PROMOTION_DELIVERED = "delivered"

# SQLite only autoincrements INTEGER PRIMARY KEY
_AUTOINCREMENT_ID = BigInteger().with_variant(Integer(), "sqlite")


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Lease(Base):
    """Lease model - the agreement whose activation is gated on move-in payments."""

    __tablename__ = "leases"

    lease_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    landlord_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    property_id: Mapped[str] = mapped_column(TEXT, nullable=False)

    # Money in USDC micros (BIGINT)
    monthly_rent_usdc_micros: Mapped[int] = mapped_column(BIGINT, nullable=False)
    security_deposit_usdc_micros: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)

    start_date: Mapped[date] = mapped_column(DATE, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)

    # Signature state
    tenant_signed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    landlord_signed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    # Recorded when the landlord signs; settlement destination
    landlord_payout_address: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=LEASE_AWAITING_SIGNATURES)

    # Optimistic locking
    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)

    activated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    terminated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", LEASE_STATUSES), name="ck_leases_status"),
        CheckConstraint(
            "monthly_rent_usdc_micros >= 0 AND security_deposit_usdc_micros >= 0",
            name="ck_leases_amounts_non_negative",
        ),
        Index("idx_leases_tenant", "tenant_id"),
        Index("idx_leases_landlord", "landlord_id"),
        Index("idx_leases_status", "status"),
    )

    @property
    def both_signed(self) -> bool:
        return self.tenant_signed_at is not None and self.landlord_signed_at is not None


class Payment(Base):
    """Payment model - a single monetary obligation tied to a lease.

    Status moves only along pending→processing→completed|failed and
    failed→pending, always through the repository CAS methods.
    """

    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    lease_id: Mapped[str] = mapped_column(TEXT, ForeignKey("leases.lease_id"), nullable=False)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)

    amount_usdc_micros: Mapped[int] = mapped_column(BIGINT, nullable=False)
    kind: Mapped[str] = mapped_column(TEXT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=PAYMENT_PENDING)

    # Part of the move-in obligation set that gates lease activation
    required_for_activation: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)

    due_date: Mapped[date] = mapped_column(DATE, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    transaction_ref: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    # Failure tracking
    failure_notes: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    failure_code: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    # Attempt bookkeeping (gateway idempotency key = payment_id:attempt_count)
    attempt_count: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Optimistic locking
    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", PAYMENT_STATUSES), name="ck_payments_status"),
        CheckConstraint(_in_clause("kind", PAYMENT_KINDS), name="ck_payments_kind"),
        CheckConstraint("amount_usdc_micros > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_lease", "lease_id"),
        Index("idx_payments_tenant_due", "tenant_id", "due_date"),
        Index("idx_payments_status_started", "status", "processing_started_at"),
        # At most one in-flight payment per (lease, kind)
        Index(
            "uq_payments_processing_per_kind",
            "lease_id",
            "kind",
            unique=True,
            postgresql_where=text("status = 'processing'"),
            sqlite_where=text("status = 'processing'"),
        ),
    )


class PaymentTransition(Base):
    """Append-only audit of every Payment status edge (written with the CAS)."""

    __tablename__ = "payment_transitions"

    id: Mapped[int] = mapped_column(_AUTOINCREMENT_ID, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    from_status: Mapped[str] = mapped_column(TEXT, nullable=False)
    to_status: Mapped[str] = mapped_column(TEXT, nullable=False)
    version: Mapped[int] = mapped_column(BIGINT, nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_payment_transitions_payment", "payment_id", "id"),)


class Wallet(Base):
    """Wallet model - an address a user can pay from or be paid to."""

    __tablename__ = "wallets"

    wallet_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    owner_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    address: Mapped[str] = mapped_column(TEXT, nullable=False)
    kind: Mapped[str] = mapped_column(TEXT, nullable=False)
    # Custodian-side wallet id; required for custodial wallets, NULL for external
    custodial_wallet_ref: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    label: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    is_primary: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_clause("kind", WALLET_KINDS), name="ck_wallets_kind"),
        CheckConstraint(
            "(kind = 'custodial' AND custodial_wallet_ref IS NOT NULL) OR "
            "(kind = 'external' AND custodial_wallet_ref IS NULL)",
            name="ck_wallets_custodial_ref",
        ),
        UniqueConstraint("owner_id", "address", name="uq_wallets_owner_address"),
        Index(
            "uq_wallets_one_primary",
            "owner_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
    )


class RolePromotionEvent(Base):
    """Outbox row for the tenant role promotion emitted on lease activation.

    Keyed by lease_id: one event per lease, ever.
    """

    __tablename__ = "role_promotion_events"

    lease_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=PROMOTION_PENDING)
    attempts: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_role_promotion_events_status", "status", "created_at"),)
