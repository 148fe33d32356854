"""Error taxonomy surfaced by the settlement core.

Gateway and store failures are translated into these at the orchestrator
boundary; no transport exception crosses it. Each class carries the HTTP
mapping used by the API's problem-details handler.
"""

from typing import Optional

PROBLEM_TYPE_BASE = "https://api.rentflow.app/problems"


class PaymentError(Exception):
    """Base exception for settlement errors."""

    status_code: int = 500
    error_code: str = "PAYMENT_ERROR"
    title: str = "Payment Error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def error_type(self) -> str:
        return f"{PROBLEM_TYPE_BASE}/{self.error_code.lower().replace('_', '-')}"


class NotFound(PaymentError):
    """Bad reference to a lease, payment or wallet (caller bug)."""

    status_code = 404
    error_code = "NOT_FOUND"
    title = "Not Found"

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class AlreadyInProgress(PaymentError):
    """Another initiate holds the payment (benign race; poll, don't retry)."""

    status_code = 409
    error_code = "ALREADY_IN_PROGRESS"
    title = "Payment Already In Progress"


class PaymentAlreadyCompleted(AlreadyInProgress):
    """The payment settled already; a completed payment is immutable."""

    error_code = "PAYMENT_ALREADY_COMPLETED"
    title = "Payment Already Completed"


class ReconciliationRequired(PaymentError):
    """A transfer was accepted for a payment recorded as failed; must not be paid again."""

    status_code = 409
    error_code = "RECONCILIATION_REQUIRED"
    title = "Payment Requires Reconciliation"

    def __init__(self, detail: str, transaction_ref: str):
        super().__init__(detail)
        self.transaction_ref = transaction_ref


class InvalidWallet(PaymentError):
    """Source wallet unknown, not owned by the payer, or not debitable."""

    status_code = 422
    error_code = "INVALID_WALLET"
    title = "Invalid Wallet"


class NoWalletConfigured(PaymentError):
    """No primary wallet to pay from (or to pay into, for the landlord)."""

    status_code = 409
    error_code = "NO_WALLET_CONFIGURED"
    title = "No Wallet Configured"

    def __init__(self, owner_id: str, detail: Optional[str] = None):
        super().__init__(detail or f"User {owner_id} has no primary wallet configured")
        self.owner_id = owner_id


class GatewayRejected(PaymentError):
    """Settlement rail refused the transfer; terminal for this attempt."""

    status_code = 402
    error_code = "GATEWAY_REJECTED"
    title = "Payment Rejected"

    def __init__(self, reason: str, error_kind: str = "rejected"):
        super().__init__(reason)
        self.reason = reason
        self.error_kind = error_kind


class GatewayUnavailable(PaymentError):
    """Settlement rail unreachable or timed out.

    outcome_unknown=False: the transfer was never accepted; safe to retry
    with backoff. outcome_unknown=True: funds may have moved; verify
    before retrying.
    """

    status_code = 503
    error_code = "GATEWAY_UNAVAILABLE"
    title = "Settlement Gateway Unavailable"

    def __init__(self, detail: str, outcome_unknown: bool = False):
        super().__init__(detail)
        self.outcome_unknown = outcome_unknown


class WalletRemovalRejected(PaymentError):
    """Primary wallet cannot be removed while other wallets exist."""

    status_code = 409
    error_code = "WALLET_REMOVAL_REJECTED"
    title = "Wallet Removal Rejected"


class InvalidLeaseState(PaymentError):
    """Lease is not in a state that allows the requested operation."""

    status_code = 409
    error_code = "INVALID_LEASE_STATE"
    title = "Invalid Lease State"
