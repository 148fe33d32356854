"""RentFlow Reaper main entry point.

Two independent loops, one thread and one session each:

1. Stale Payment Loop:
   - Scan: status='processing' AND processing_started_at < NOW - window
   - Reap: processing → failed (STALE_PROCESSING, unknown outcome)
   - Interval: 30 seconds

2. Promotion Loop:
   - Scan: role_promotion_events with status='pending'
   - Deliver to the account-role service
   - Interval: 60 seconds
"""

import logging
import os
import threading

from rentflow_api.config.env import get_database_url, validate_processing_window
from rentflow_api.db.engine import build_engine, build_sessionmaker
from rentflow_api.utils import configure_json_logging
from rentflow_reaper.loops.promotion_loop import promotion_loop
from rentflow_reaper.loops.shutdown import install_signal_handlers
from rentflow_reaper.loops.stale_payment_loop import stale_payment_loop

configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point for the reaper."""
    # Fails fast when the window would let the sweep race a live gateway call
    processing_timeout_sec = validate_processing_window()
    # Fails fast in production when DATABASE_URL is missing
    database_url = get_database_url()

    install_signal_handlers()

    stale_interval_sec = int(os.getenv("REAPER_INTERVAL_SEC", "30"))
    scan_limit = int(os.getenv("REAPER_SCAN_LIMIT", "100"))
    promotion_interval_sec = int(os.getenv("PROMOTION_RETRY_INTERVAL_SEC", "60"))

    engine = build_engine(database_url)
    SessionLocal = build_sessionmaker(engine)

    # SQLAlchemy sessions are NOT thread-safe
    stale_session = SessionLocal()
    promotion_session = SessionLocal()

    logger.info(
        f"Stale Payment Loop: interval={stale_interval_sec}s, limit={scan_limit}, "
        f"window={processing_timeout_sec}s"
    )
    logger.info(f"Promotion Loop: interval={promotion_interval_sec}s, limit={scan_limit}")

    stale_thread = threading.Thread(
        target=stale_payment_loop,
        kwargs={
            "db": stale_session,
            "interval_seconds": stale_interval_sec,
            "limit_per_scan": scan_limit,
            "processing_timeout_sec": processing_timeout_sec,
        },
        name="StalePaymentLoop",
        daemon=False,
    )
    promotion_thread = threading.Thread(
        target=promotion_loop,
        kwargs={
            "db": promotion_session,
            "interval_seconds": promotion_interval_sec,
            "limit_per_scan": scan_limit,
        },
        name="PromotionLoop",
        daemon=False,
    )

    try:
        stale_thread.start()
        promotion_thread.start()

        # Blocks until SIGTERM/SIGINT
        stale_thread.join()
        promotion_thread.join()
    except KeyboardInterrupt:
        logger.info("Reaper stopped by user (KeyboardInterrupt)")
    finally:
        stale_session.close()
        promotion_session.close()
        logger.info("Reaper shutdown complete")


if __name__ == "__main__":
    main()
