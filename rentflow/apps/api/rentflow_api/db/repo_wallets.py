"""Wallet repository."""

from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rentflow_api.db.models import Wallet


class WalletRepository:
    """Data access for wallets.

    Primary-flag reassignment clears the owner's current primary before
    setting the new one, inside the caller's transaction, so the partial
    unique index on (owner_id WHERE is_primary) never sees two primaries.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, wallet_id: str) -> Optional[Wallet]:
        return self.db.get(Wallet, wallet_id, populate_existing=True)

    def list_for_owner(self, owner_id: str) -> list[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.owner_id == owner_id)
            .order_by(Wallet.is_primary.desc(), Wallet.created_at)
            .execution_options(populate_existing=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_primary(self, owner_id: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.owner_id == owner_id, Wallet.is_primary.is_(True))
        return self.db.execute(stmt).scalars().first()

    def get_by_address(self, owner_id: str, address: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.owner_id == owner_id, Wallet.address == address)
        return self.db.execute(stmt).scalars().first()

    def count_for_owner(self, owner_id: str) -> int:
        stmt = select(func.count()).select_from(Wallet).where(Wallet.owner_id == owner_id)
        return int(self.db.execute(stmt).scalar_one())

    def add(self, wallet: Wallet) -> Wallet:
        self.db.add(wallet)
        self.db.flush()
        return wallet

    def set_primary(self, owner_id: str, wallet_id: str) -> bool:
        """Make wallet_id the owner's only primary wallet.

        Returns:
            False if wallet_id does not belong to owner_id
        """
        self.db.execute(
            update(Wallet)
            .where(Wallet.owner_id == owner_id, Wallet.wallet_id != wallet_id, Wallet.is_primary.is_(True))
            .values(is_primary=False)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            update(Wallet)
            .where(Wallet.owner_id == owner_id, Wallet.wallet_id == wallet_id)
            .values(is_primary=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, wallet: Wallet) -> None:
        self.db.delete(wallet)
        self.db.flush()
