"""Wallet management and wallet selection for settlement.

Primary-flag rules:
- An owner's first wallet becomes primary automatically
- Reassignment clears and sets in one transaction
- The primary wallet cannot be removed while the owner has other wallets
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentflow_api.db.models import WALLET_CUSTODIAL, WALLET_EXTERNAL, WALLET_KINDS, Lease, Wallet
from rentflow_api.db.repo_wallets import WalletRepository
from rentflow_api.settlement.errors import (
    InvalidWallet,
    NoWalletConfigured,
    NotFound,
    WalletRemovalRejected,
)

logger = logging.getLogger(__name__)


def _owned_wallet(repo: WalletRepository, owner_id: str, wallet_id: str) -> Wallet:
    wallet = repo.get_by_id(wallet_id)
    if wallet is None or wallet.owner_id != owner_id:
        raise NotFound("Wallet", wallet_id)
    return wallet


def add_wallet(
    db: Session,
    owner_id: str,
    address: str,
    kind: str,
    custodial_wallet_ref: Optional[str] = None,
    label: Optional[str] = None,
) -> Wallet:
    """Register a wallet for owner_id.

    Raises:
        InvalidWallet: Unknown kind, custodial reference mismatch, or duplicate address
        IntegrityError: Any other constraint violation
    """
    if kind not in WALLET_KINDS:
        raise InvalidWallet(f"Unknown wallet kind: {kind}")
    if kind == WALLET_CUSTODIAL and not custodial_wallet_ref:
        raise InvalidWallet("Custodial wallets require a custodial wallet reference")
    if kind == WALLET_EXTERNAL and custodial_wallet_ref:
        raise InvalidWallet("External wallets cannot carry a custodial wallet reference")

    repo = WalletRepository(db)
    is_first = repo.count_for_owner(owner_id) == 0

    def _insert(is_primary: bool) -> Wallet:
        wallet = Wallet(
            wallet_id=str(uuid.uuid4()),
            owner_id=owner_id,
            address=address,
            kind=kind,
            custodial_wallet_ref=custodial_wallet_ref,
            label=label,
            is_primary=is_primary,
        )
        repo.add(wallet)
        db.commit()
        return wallet

    try:
        wallet = _insert(is_first)
    except IntegrityError as e:
        db.rollback()
        if repo.get_by_address(owner_id, address) is not None:
            raise InvalidWallet(f"Wallet address {address} is already registered") from e
        if not is_first:
            raise
        # A concurrent first wallet took the primary slot; join as secondary
        logger.info(
            "Primary wallet claimed concurrently",
            extra={"event": "wallet.primary_race_lost", "owner_id": owner_id},
        )
        try:
            wallet = _insert(False)
        except IntegrityError as retry_error:
            db.rollback()
            if repo.get_by_address(owner_id, address) is not None:
                raise InvalidWallet(
                    f"Wallet address {address} is already registered"
                ) from retry_error
            raise

    db.refresh(wallet)
    logger.info(
        "Wallet added",
        extra={
            "event": "wallet.added",
            "owner_id": owner_id,
            "wallet_id": wallet.wallet_id,
            "is_primary": wallet.is_primary,
        },
    )
    return wallet


def list_wallets(db: Session, owner_id: str) -> list[Wallet]:
    return WalletRepository(db).list_for_owner(owner_id)


def set_primary_wallet(db: Session, owner_id: str, wallet_id: str) -> Wallet:
    """Designate wallet_id as the owner's primary wallet.

    Raises:
        NotFound: If the wallet does not exist or belongs to someone else
    """
    repo = WalletRepository(db)
    wallet = _owned_wallet(repo, owner_id, wallet_id)

    if not repo.set_primary(owner_id, wallet_id):
        db.rollback()
        raise NotFound("Wallet", wallet_id)
    db.commit()

    logger.info(
        "Primary wallet reassigned",
        extra={"event": "wallet.primary_set", "owner_id": owner_id, "wallet_id": wallet_id},
    )
    return repo.get_by_id(wallet.wallet_id)


def remove_wallet(db: Session, owner_id: str, wallet_id: str) -> None:
    """Delete a wallet.

    The primary wallet can only go when it is the owner's last wallet;
    otherwise another wallet must be made primary first.

    Raises:
        NotFound: If the wallet does not exist or belongs to someone else
        WalletRemovalRejected: If wallet is primary and other wallets exist
    """
    repo = WalletRepository(db)
    wallet = _owned_wallet(repo, owner_id, wallet_id)

    if wallet.is_primary and repo.count_for_owner(owner_id) > 1:
        raise WalletRemovalRejected(
            f"Wallet {wallet_id} is the primary wallet; designate another primary wallet first"
        )

    repo.delete(wallet)
    db.commit()
    logger.info(
        "Wallet removed",
        extra={"event": "wallet.removed", "owner_id": owner_id, "wallet_id": wallet_id},
    )


def resolve_source_wallet(db: Session, tenant_id: str, wallet_id: Optional[str] = None) -> Wallet:
    """Wallet to debit for a payment by tenant_id.

    An explicit wallet must belong to the tenant. Without one, the primary
    wallet is used; a non-primary wallet is never picked implicitly.

    Raises:
        InvalidWallet: Explicit wallet unknown, foreign, or not custodial
        NoWalletConfigured: No explicit wallet and no primary wallet
    """
    repo = WalletRepository(db)
    if wallet_id is not None:
        wallet = repo.get_by_id(wallet_id)
        if wallet is None or wallet.owner_id != tenant_id:
            raise InvalidWallet(f"Wallet {wallet_id} is not a wallet of the paying tenant")
    else:
        wallet = repo.get_primary(tenant_id)
        if wallet is None:
            raise NoWalletConfigured(tenant_id)

    if wallet.kind != WALLET_CUSTODIAL or not wallet.custodial_wallet_ref:
        raise InvalidWallet(
            f"Wallet {wallet.wallet_id} is an external wallet and cannot be debited by the platform"
        )
    return wallet


def resolve_destination_address(db: Session, lease: Lease) -> str:
    """Payout address for a lease's payments.

    Raises:
        NoWalletConfigured: If the landlord has neither a payout address nor a primary wallet
    """
    if lease.landlord_payout_address:
        return lease.landlord_payout_address

    wallet = WalletRepository(db).get_primary(lease.landlord_id)
    if wallet is None:
        raise NoWalletConfigured(
            lease.landlord_id,
            f"Landlord {lease.landlord_id} has no payout address or primary wallet for lease {lease.lease_id}",
        )
    return wallet.address
