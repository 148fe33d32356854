"""Lease activation payment settlement: tracker, orchestrator, activation trigger."""

from rentflow_api.settlement.errors import (
    AlreadyInProgress,
    GatewayRejected,
    GatewayUnavailable,
    InvalidLeaseState,
    InvalidWallet,
    NotFound,
    NoWalletConfigured,
    PaymentAlreadyCompleted,
    PaymentError,
    WalletRemovalRejected,
)

__all__ = [
    "PaymentError",
    "NotFound",
    "AlreadyInProgress",
    "PaymentAlreadyCompleted",
    "InvalidWallet",
    "NoWalletConfigured",
    "GatewayRejected",
    "GatewayUnavailable",
    "WalletRemovalRejected",
    "InvalidLeaseState",
]
