"""Pydantic schemas for API requests/responses."""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from rentflow_api.utils.money import format_usdc_micros

USDC_AMOUNT_PATTERN = r"^\d+(\.\d{1,6})?$"


# ============================================================================
# Payments
# ============================================================================


class PaymentResponse(BaseModel):
    """Payment as returned by GET /v1/payments/{payment_id} and the action endpoints."""

    payment_id: str
    lease_id: str
    tenant_id: str
    kind: str
    amount: str = Field(..., description="USDC amount (decimal string)")
    status: str
    required_for_activation: bool
    due_date: date
    completed_at: Optional[datetime] = None
    transaction_ref: Optional[str] = None
    failure_code: Optional[str] = None
    failure_notes: Optional[str] = None
    attempt_count: int

    @classmethod
    def from_model(cls, payment: Any) -> "PaymentResponse":
        return cls(
            payment_id=payment.payment_id,
            lease_id=payment.lease_id,
            tenant_id=payment.tenant_id,
            kind=payment.kind,
            amount=format_usdc_micros(payment.amount_usdc_micros),
            status=payment.status,
            required_for_activation=payment.required_for_activation,
            due_date=payment.due_date,
            completed_at=payment.completed_at,
            transaction_ref=payment.transaction_ref,
            failure_code=payment.failure_code,
            failure_notes=payment.failure_notes,
            attempt_count=payment.attempt_count,
        )


class InitiatePaymentRequest(BaseModel):
    """Request body for POST /v1/payments/{payment_id}/initiate."""

    source_wallet_id: Optional[str] = Field(
        None, description="Tenant wallet to debit; primary wallet when omitted"
    )


class CreatePaymentRequest(BaseModel):
    """Request body for POST /v1/leases/{lease_id}/payments (ad hoc payment)."""

    kind: Literal["security_deposit", "rent", "late_fee", "other"]
    amount: str = Field(..., description="USDC amount (up to 6dp)", pattern=USDC_AMOUNT_PATTERN)
    due_date: date


# ============================================================================
# Leases
# ============================================================================


class LeaseResponse(BaseModel):
    """Lease summary."""

    model_config = ConfigDict(from_attributes=True)

    lease_id: str
    tenant_id: str
    landlord_id: str
    property_id: str
    status: str
    start_date: date
    end_date: Optional[date] = None
    tenant_signed_at: Optional[datetime] = None
    landlord_signed_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None


class SignatureRequest(BaseModel):
    """Request body for POST /v1/leases/{lease_id}/signatures."""

    party: Literal["tenant", "landlord"]
    payout_address: Optional[str] = Field(
        None, description="Landlord settlement address (landlord signature only)", min_length=1
    )


class RequiredPaymentInfo(BaseModel):
    """One required payment in the tracker / dashboard views."""

    payment_id: str
    kind: str
    amount: str
    status: str
    display_status: Optional[str] = None
    due_date: date
    is_overdue: bool
    completed_at: Optional[datetime] = None
    transaction_ref: Optional[str] = None
    failure_notes: Optional[str] = None
    can_retry: Optional[bool] = None


class RequiredPaymentsResponse(BaseModel):
    """Response for GET /v1/leases/{lease_id}/required-payments."""

    lease_id: str
    lease_status: str
    all_required_complete: bool
    outstanding_kinds: list[str]
    payments: list[RequiredPaymentInfo]


class LeaseDashboardResponse(BaseModel):
    """Response for GET /v1/leases/{lease_id}/dashboard."""

    lease_id: str
    lease_status: str
    tenant_signed: bool
    landlord_signed: bool
    all_required_complete: bool
    outstanding_kinds: list[str]
    total_due: str
    total_paid: str
    required_payments: list[RequiredPaymentInfo]


# ============================================================================
# Wallets
# ============================================================================


class WalletCreateRequest(BaseModel):
    """Request body for POST /v1/users/{owner_id}/wallets."""

    address: str = Field(..., min_length=1, max_length=128)
    kind: Literal["custodial", "external"]
    custodial_wallet_ref: Optional[str] = Field(None, min_length=1)
    label: Optional[str] = Field(None, max_length=100)


class WalletResponse(BaseModel):
    """Wallet as returned by the wallet endpoints."""

    model_config = ConfigDict(from_attributes=True)

    wallet_id: str
    owner_id: str
    address: str
    kind: str
    label: Optional[str] = None
    is_primary: bool
    created_at: datetime


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    RFC 9457: detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
