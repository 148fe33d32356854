"""Request context management for observability.

Context variables are read by the JSON log formatter so that every record
emitted while handling a request or a settlement carries its identifiers.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Lease currently being settled or activated
lease_id_var: ContextVar[str] = ContextVar("lease_id", default="")

# Payment currently being orchestrated
payment_id_var: ContextVar[str] = ContextVar("payment_id", default="")

# Paying tenant (renter) for the current payment
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")


@contextmanager
def settlement_context(
    lease_id: str = "", payment_id: str = "", tenant_id: str = ""
) -> Iterator[None]:
    """Bind settlement identifiers for the duration of a block."""
    tokens = [
        (lease_id_var, lease_id_var.set(lease_id)),
        (payment_id_var, payment_id_var.set(payment_id)),
        (tenant_id_var, tenant_id_var.set(tenant_id)),
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
