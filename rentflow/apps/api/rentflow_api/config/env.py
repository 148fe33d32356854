"""Environment variable resolution utilities.

Canonical env names + fail-fast validation in production.
"""

import os
from typing import Optional

DEFAULT_CIRCLE_API_URL = "https://api-sandbox.circle.com"
DEFAULT_DEV_DATABASE_URL = "sqlite:///./rentflow_dev.db"


def get_rentflow_env() -> str:
    """Get RentFlow environment name.

    Returns:
        Environment name (lowercase), "local" when RENTFLOW_ENV is unset
    """
    return os.getenv("RENTFLOW_ENV", "local").lower()


def is_production_env() -> bool:
    """Determine if running in production."""
    return get_rentflow_env() in {"prod", "production"}


def get_database_url() -> str:
    """Get database URL.

    Production: DATABASE_URL is mandatory (fail-fast).
    Development/CI: falls back to a local SQLite file.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if is_production_env():
        raise RuntimeError(
            "DATABASE_URL environment variable is required in production (RENTFLOW_ENV=prod/production). "
            "Check deployment configuration and secrets injection."
        )
    return DEFAULT_DEV_DATABASE_URL


def _get_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def get_settlement_timeout_sec() -> float:
    """Timeout for a single settlement gateway call (SETTLEMENT_TIMEOUT_SEC, default 30)."""
    return _get_positive_float("SETTLEMENT_TIMEOUT_SEC", 30.0)


def get_processing_timeout_sec() -> float:
    """Window after which a `processing` payment counts as stale.

    RENTFLOW_PROCESSING_TIMEOUT_SEC, default 300. Must exceed the gateway
    timeout so the sweep never races a live gateway call.
    """
    return _get_positive_float("RENTFLOW_PROCESSING_TIMEOUT_SEC", 300.0)


def validate_processing_window() -> float:
    """Check that the stale window outlasts a gateway call.

    Returns:
        The processing window in seconds

    Raises:
        ValueError: If RENTFLOW_PROCESSING_TIMEOUT_SEC <= SETTLEMENT_TIMEOUT_SEC
    """
    window = get_processing_timeout_sec()
    gateway_timeout = get_settlement_timeout_sec()
    if window <= gateway_timeout:
        raise ValueError(
            f"RENTFLOW_PROCESSING_TIMEOUT_SEC ({window:g}) must exceed "
            f"SETTLEMENT_TIMEOUT_SEC ({gateway_timeout:g})"
        )
    return window


def get_circle_api_key() -> Optional[str]:
    """Circle API key (CIRCLE_API_KEY); None selects the simulated gateway."""
    return os.getenv("CIRCLE_API_KEY") or None


def get_circle_api_url() -> str:
    """Circle API base URL (CIRCLE_API_URL, default sandbox)."""
    return os.getenv("CIRCLE_API_URL") or DEFAULT_CIRCLE_API_URL


def get_account_role_service_url() -> Optional[str]:
    """Base URL of the account-role subsystem (ACCOUNT_ROLE_SERVICE_URL)."""
    return os.getenv("ACCOUNT_ROLE_SERVICE_URL") or None


def get_account_role_service_token() -> Optional[str]:
    """Bearer token for the account-role subsystem (ACCOUNT_ROLE_SERVICE_TOKEN)."""
    return os.getenv("ACCOUNT_ROLE_SERVICE_TOKEN") or None


def get_cors_allowed_origins() -> list[str]:
    """CORS allowlist (comma-separated CORS_ALLOWED_ORIGINS).

    Dev fallback: localhost variants.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return [
        "http://localhost:3000",
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8000",
    ]
