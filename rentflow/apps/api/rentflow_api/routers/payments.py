"""Payment endpoints: read, initiate, retry."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rentflow_api.db.repo_payments import PaymentRepository
from rentflow_api.db.session import get_db
from rentflow_api.schemas import InitiatePaymentRequest, PaymentResponse
from rentflow_api.settlement.errors import NotFound
from rentflow_api.settlement.gateway import SettlementGateway, get_settlement_gateway
from rentflow_api.settlement.orchestrator import PaymentOrchestrator
from rentflow_api.settlement.promotion import RolePromoter, get_role_promoter

router = APIRouter(prefix="/v1/payments", tags=["payments"])
logger = logging.getLogger(__name__)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: str, db: Session = Depends(get_db)) -> PaymentResponse:
    payment = PaymentRepository(db).get_by_id(payment_id)
    if payment is None:
        raise NotFound("Payment", payment_id)
    return PaymentResponse.from_model(payment)


@router.post("/{payment_id}/initiate", response_model=PaymentResponse)
async def initiate_payment(
    payment_id: str,
    request: Optional[InitiatePaymentRequest] = None,
    db: Session = Depends(get_db),
    gateway: SettlementGateway = Depends(get_settlement_gateway),
    promoter: RolePromoter = Depends(get_role_promoter),
) -> PaymentResponse:
    """Settle a pending or failed payment through the settlement gateway.

    Returns the completed payment. 409 means another attempt holds the
    payment (poll GET /v1/payments/{payment_id}); 402 and 503 leave the
    payment failed with its failure note.
    """
    source_wallet_id = request.source_wallet_id if request else None
    orchestrator = PaymentOrchestrator(db, gateway=gateway, promoter=promoter)
    payment = await orchestrator.initiate(payment_id, source_wallet_id)
    return PaymentResponse.from_model(payment)


@router.post("/{payment_id}/retry", response_model=PaymentResponse)
async def retry_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    gateway: SettlementGateway = Depends(get_settlement_gateway),
) -> PaymentResponse:
    """Move a failed payment back to pending without contacting the gateway."""
    payment = PaymentOrchestrator(db, gateway=gateway).retry(payment_id)
    return PaymentResponse.from_model(payment)
