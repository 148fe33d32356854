"""Settlement gateway clients (USDC transfers).

The orchestrator talks to a SettlementGateway. Two implementations:
- CircleSettlementGateway: Circle Transfers API over httpx
- SimulatedSettlementGateway: local/dev fallback when CIRCLE_API_KEY is unset

Circle API Reference:
- Transfers: https://developers.circle.com/circle-mint/reference/createtransfer
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from rentflow_api.config.env import (
    get_circle_api_key,
    get_circle_api_url,
    get_settlement_timeout_sec,
    is_production_env,
)
from rentflow_api.utils.money import format_usdc_micros

logger = logging.getLogger(__name__)

SETTLEMENT_CHAIN = "SOL"


@dataclass(frozen=True)
class SettlementReceipt:
    """Accepted transfer. transaction_ref is the chain hash or, while the
    transfer is still pending on Circle's side, the Circle transfer id."""

    transaction_ref: str
    status: str


class SettlementError(Exception):
    """Base exception for gateway outcomes other than success."""

    pass


class SettlementRejected(SettlementError):
    """Gateway refused the transfer (insufficient funds, invalid address, ...)."""

    def __init__(self, error_kind: str, message: str):
        super().__init__(message)
        self.error_kind = error_kind
        self.message = message


class SettlementUnavailable(SettlementError):
    """Gateway could not accept the request; no funds moved."""

    pass


class SettlementOutcomeUnknown(SettlementError):
    """Request may have reached the gateway but no answer came back."""

    pass


class SettlementGateway(Protocol):
    async def execute(
        self,
        *,
        source_wallet_ref: str,
        destination_address: str,
        amount_usdc_micros: int,
        idempotency_key: str,
    ) -> SettlementReceipt:
        ...


class CircleSettlementGateway:
    """Circle Transfers API client.

    Environment Variables:
    - CIRCLE_API_KEY: Circle API key (Bearer)
    - CIRCLE_API_URL: API base URL (sandbox by default)
    - SETTLEMENT_TIMEOUT_SEC: per-call timeout
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or get_circle_api_key()
        if not self.api_key:
            raise ValueError("CIRCLE_API_KEY is required. Set it in environment configuration.")

        self.base_url = (base_url or get_circle_api_url()).rstrip("/")
        self.timeout_sec = timeout_sec or get_settlement_timeout_sec()
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def execute(
        self,
        *,
        source_wallet_ref: str,
        destination_address: str,
        amount_usdc_micros: int,
        idempotency_key: str,
    ) -> SettlementReceipt:
        """Create a transfer from a custodial wallet to a blockchain address.

        Args:
            source_wallet_ref: Circle wallet id of the payer
            destination_address: On-chain payout address
            amount_usdc_micros: Amount in USDC micros
            idempotency_key: Unique per payment attempt

        Returns:
            SettlementReceipt for complete or pending transfers

        Raises:
            SettlementRejected: 4xx or a failed transfer
            SettlementUnavailable: connection refused, rate limited, 503
            SettlementOutcomeUnknown: timeout or broken connection after sending
        """
        url = f"{self.base_url}/v1/transfers"
        transfer_request = {
            "idempotencyKey": idempotency_key,
            "source": {"type": "wallet", "id": source_wallet_ref},
            "destination": {
                "type": "blockchain",
                "address": destination_address,
                "chain": SETTLEMENT_CHAIN,
            },
            "amount": {"amount": format_usdc_micros(amount_usdc_micros), "currency": "USD"},
        }

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout_sec
            ) as client:
                response = await client.post(url, headers=self._headers(), json=transfer_request)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise SettlementUnavailable(f"Circle unreachable: {type(e).__name__}") from e
        except httpx.TimeoutException as e:
            raise SettlementOutcomeUnknown(f"Circle timed out: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise SettlementOutcomeUnknown(f"Circle transport error: {type(e).__name__}") from e

        return self._parse_response(response, idempotency_key)

    def _parse_response(self, response: httpx.Response, idempotency_key: str) -> SettlementReceipt:
        status_code = response.status_code

        if status_code in (429, 503):
            raise SettlementUnavailable(f"Circle returned HTTP {status_code}")
        if status_code >= 500:
            # Accepted at the edge; the transfer may or may not exist
            raise SettlementOutcomeUnknown(f"Circle returned HTTP {status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if status_code >= 400:
            error_kind = str(body.get("code") or f"http_{status_code}")
            message = body.get("message") or f"Circle rejected transfer (HTTP {status_code})"
            raise SettlementRejected(error_kind, message)

        data = body.get("data") or {}
        transfer_status = data.get("status")

        if transfer_status == "complete":
            ref = data.get("transactionHash") or data.get("id")
        elif transfer_status == "pending":
            ref = data.get("id")
        elif transfer_status == "failed":
            error_kind = data.get("errorCode") or "transfer_failed"
            raise SettlementRejected(error_kind, f"Transfer failed: {error_kind}")
        else:
            raise SettlementOutcomeUnknown(f"Unexpected Circle transfer status: {transfer_status!r}")

        if not ref:
            raise SettlementOutcomeUnknown("Circle response carried no transfer reference")

        logger.info(
            "Circle transfer accepted",
            extra={
                "event": "circle.transfer.accepted",
                "idempotency_key": idempotency_key,
                "transfer_status": transfer_status,
                "transaction_ref": ref,
            },
        )
        return SettlementReceipt(transaction_ref=ref, status=transfer_status)


class SimulatedSettlementGateway:
    """Always-succeeding gateway for local development and demos."""

    async def execute(
        self,
        *,
        source_wallet_ref: str,
        destination_address: str,
        amount_usdc_micros: int,
        idempotency_key: str,
    ) -> SettlementReceipt:
        ref = f"SIMULATED_{uuid.uuid4().hex[:8]}_{int(time.time() * 1000)}"
        logger.info(
            "Simulated transfer",
            extra={
                "event": "settlement.simulated",
                "idempotency_key": idempotency_key,
                "amount": format_usdc_micros(amount_usdc_micros),
            },
        )
        return SettlementReceipt(transaction_ref=ref, status="complete")


# Global gateway instance
_settlement_gateway: Optional[SettlementGateway] = None


def get_settlement_gateway() -> SettlementGateway:
    """Get global settlement gateway (singleton).

    Falls back to the simulated gateway when CIRCLE_API_KEY is unset,
    except in production where that is a configuration error.

    Raises:
        RuntimeError: If CIRCLE_API_KEY is missing in production
    """
    global _settlement_gateway
    if _settlement_gateway is None:
        if get_circle_api_key():
            _settlement_gateway = CircleSettlementGateway()
        elif is_production_env():
            raise RuntimeError(
                "CIRCLE_API_KEY environment variable is required in production "
                "(RENTFLOW_ENV=prod/production)."
            )
        else:
            logger.warning(
                "CIRCLE_API_KEY not set; settlement transfers will be simulated",
                extra={"event": "settlement.simulated_mode"},
            )
            _settlement_gateway = SimulatedSettlementGateway()
    return _settlement_gateway
