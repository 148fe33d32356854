"""Tenant role promotion, emitted when a lease becomes active.

The event row is written with the activation itself (outbox). Delivery to
the account-role subsystem happens after commit, is retried by the reaper
while the row stays pending, and never raises to the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx
from sqlalchemy.orm import Session

from rentflow_api.config.env import (
    get_account_role_service_token,
    get_account_role_service_url,
    get_settlement_timeout_sec,
    is_production_env,
)
from rentflow_api.db.models import RolePromotionEvent
from rentflow_api.db.repo_promotions import RolePromotionRepository

logger = logging.getLogger(__name__)

TENANT_ROLE = "tenant"


class RolePromoter(Protocol):
    async def promote_to_tenant(self, tenant_id: str, lease_id: str) -> None:
        ...


class HttpRolePromoter:
    """Account-role subsystem client.

    Environment Variables:
    - ACCOUNT_ROLE_SERVICE_URL: base URL
    - ACCOUNT_ROLE_SERVICE_TOKEN: optional Bearer token
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or get_account_role_service_url() or "").rstrip("/")
        if not self.base_url:
            raise ValueError(
                "ACCOUNT_ROLE_SERVICE_URL is required. Set it in environment configuration."
            )
        self.token = token or get_account_role_service_token()
        self.timeout_sec = timeout_sec or get_settlement_timeout_sec()
        self._transport = transport

    async def promote_to_tenant(self, tenant_id: str, lease_id: str) -> None:
        """Grant the tenant role.

        Raises:
            httpx.HTTPError: On transport failure or non-2xx response
        """
        url = f"{self.base_url}/v1/users/{tenant_id}/roles"
        headers = {
            "Content-Type": "application/json",
            # One promotion per lease; lets the receiver drop redeliveries
            "Idempotency-Key": f"role-promotion:{lease_id}",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_sec) as client:
            response = await client.post(
                url, headers=headers, json={"role": TENANT_ROLE, "lease_id": lease_id}
            )
            response.raise_for_status()


class LoggingRolePromoter:
    """Local/dev stand-in: records the promotion in the log only."""

    async def promote_to_tenant(self, tenant_id: str, lease_id: str) -> None:
        logger.info(
            "Role promotion (log only)",
            extra={"event": "role_promotion.logged", "promoted_tenant": tenant_id, "role": TENANT_ROLE},
        )


# Global promoter instance
_role_promoter: Optional[RolePromoter] = None


def get_role_promoter() -> RolePromoter:
    """Get global role promoter (singleton).

    Raises:
        RuntimeError: If ACCOUNT_ROLE_SERVICE_URL is missing in production
    """
    global _role_promoter
    if _role_promoter is None:
        if get_account_role_service_url():
            _role_promoter = HttpRolePromoter()
        elif is_production_env():
            raise RuntimeError(
                "ACCOUNT_ROLE_SERVICE_URL environment variable is required in production "
                "(RENTFLOW_ENV=prod/production)."
            )
        else:
            _role_promoter = LoggingRolePromoter()
    return _role_promoter


async def deliver_role_promotion(
    db: Session, event: RolePromotionEvent, promoter: RolePromoter
) -> bool:
    """Send one promotion event and record the outcome on its outbox row.

    Returns:
        True if this call marked the event delivered
    """
    lease_id = event.lease_id
    tenant_id = event.tenant_id
    repo = RolePromotionRepository(db)

    try:
        await promoter.promote_to_tenant(tenant_id, lease_id)
    except Exception as e:
        logger.warning(
            "Role promotion failed; will retry",
            extra={
                "event": "role_promotion.failed",
                "promoted_tenant": tenant_id,
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        repo.record_failure(lease_id, f"{type(e).__name__}: {e}", datetime.now(timezone.utc))
        db.commit()
        return False

    won = repo.mark_delivered(lease_id, datetime.now(timezone.utc))
    db.commit()
    if won:
        logger.info(
            "Role promotion delivered",
            extra={"event": "role_promotion.delivered", "promoted_tenant": tenant_id},
        )
    return won


async def dispatch_pending_promotions(
    db: Session, promoter: RolePromoter, limit: int = 100
) -> int:
    """Deliver every pending promotion event (oldest first).

    Returns:
        Number of events delivered by this call
    """
    delivered = 0
    for event in RolePromotionRepository(db).list_pending(limit=limit):
        if await deliver_role_promotion(db, event, promoter):
            delivered += 1
    return delivered
