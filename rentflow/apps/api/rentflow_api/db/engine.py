"""Database engine builder (SSOT).

- Default pool: NullPool (client-side pooling disabled, server pooler expected)
- ENV: RENTFLOW_DB_POOL=nullpool|queuepool (default: nullpool)
- SQLite (dev/tests): check_same_thread disabled; in-memory URLs use StaticPool
  so every session sees the same database.
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, QueuePool, StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_VALID_POOLS = {"nullpool", "queuepool"}


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _pool_kwargs(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return kwargs

    pool = (os.getenv("RENTFLOW_DB_POOL") or "nullpool").lower()
    if pool not in _VALID_POOLS:
        raise ValueError(f"RENTFLOW_DB_POOL must be one of {sorted(_VALID_POOLS)}, got {pool!r}")
    if pool == "queuepool":
        return {"poolclass": QueuePool, "pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}
    return {"poolclass": NullPool}


def build_engine(url: str, **overrides: Any) -> Engine:
    """Build the SQLAlchemy engine for the ledger store.

    Args:
        url: Database URL
        **overrides: Extra create_engine kwargs (take precedence)

    Returns:
        Engine
    """
    kwargs = _pool_kwargs(url)
    kwargs.update(overrides)
    engine = create_engine(url, **kwargs)
    logger.info(
        "Database engine built",
        extra={"db_url": _mask_password(url), "poolclass": type(engine.pool).__name__},
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
