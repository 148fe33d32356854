"""Role promotion retry loop.

Re-delivers role_promotion_events still pending after the activating
request (account-role service down, process crash after commit).
Delivered events are never re-sent.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from rentflow_api.settlement.promotion import (
    RolePromoter,
    dispatch_pending_promotions,
    get_role_promoter,
)
from rentflow_reaper.loops.shutdown import shutdown_event

logger = logging.getLogger(__name__)


def promotion_loop(
    db: Session,
    promoter: Optional[RolePromoter] = None,
    interval_seconds: int = 60,
    limit_per_scan: int = 100,
    stop_after_one_iteration: bool = False,
) -> None:
    """Periodically deliver pending role promotion events.

    Args:
        db: Database session (owned by this loop's thread)
        promoter: Role promoter (from environment if not provided)
        interval_seconds: Sleep interval between dispatches
        limit_per_scan: Max events per iteration
        stop_after_one_iteration: For testing only - exit after one dispatch
    """
    if promoter is None:
        promoter = get_role_promoter()

    logger.info(f"Promotion loop started (interval={interval_seconds}s, limit={limit_per_scan})")

    iteration = 0
    total_delivered = 0

    while not shutdown_event.is_set():
        iteration += 1

        try:
            db.expire_all()
            delivered = asyncio.run(
                dispatch_pending_promotions(db, promoter, limit=limit_per_scan)
            )
            total_delivered += delivered
            if delivered:
                logger.info(
                    f"Promotion iteration {iteration}: {delivered} delivered",
                    extra={"iteration": iteration, "delivered": delivered},
                )
        except Exception as e:
            db.rollback()
            logger.error(f"Promotion loop error in iteration {iteration}: {e}", exc_info=True)

        if stop_after_one_iteration:
            logger.info("Promotion loop stopping after one iteration (test mode)")
            break

        shutdown_event.wait(interval_seconds)

    logger.info(
        f"Promotion loop stopped after {iteration} iterations",
        extra={"total_iterations": iteration, "total_delivered": total_delivered},
    )
