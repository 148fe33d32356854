"""Wallet endpoints (per owner)."""

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from rentflow_api.db.session import get_db
from rentflow_api.schemas import WalletCreateRequest, WalletResponse
from rentflow_api.settlement.wallets import (
    add_wallet,
    list_wallets,
    remove_wallet,
    set_primary_wallet,
)

router = APIRouter(prefix="/v1/users/{owner_id}/wallets", tags=["wallets"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[WalletResponse])
async def get_wallets(owner_id: str, db: Session = Depends(get_db)) -> list[WalletResponse]:
    """List wallets, primary first."""
    return [WalletResponse.model_validate(w) for w in list_wallets(db, owner_id)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=WalletResponse)
async def create_wallet(
    owner_id: str, request: WalletCreateRequest, db: Session = Depends(get_db)
) -> WalletResponse:
    """Register a wallet. The owner's first wallet becomes primary."""
    wallet = add_wallet(
        db,
        owner_id,
        address=request.address,
        kind=request.kind,
        custodial_wallet_ref=request.custodial_wallet_ref,
        label=request.label,
    )
    return WalletResponse.model_validate(wallet)


@router.put("/{wallet_id}/primary", response_model=WalletResponse)
async def make_primary(
    owner_id: str, wallet_id: str, db: Session = Depends(get_db)
) -> WalletResponse:
    wallet = set_primary_wallet(db, owner_id, wallet_id)
    return WalletResponse.model_validate(wallet)


@router.delete("/{wallet_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_wallet(owner_id: str, wallet_id: str, db: Session = Depends(get_db)) -> Response:
    """Remove a wallet.

    409 if it is the primary wallet and the owner has other wallets.
    """
    remove_wallet(db, owner_id, wallet_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
