"""Periodic housekeeping ticker.

Uses APScheduler BackgroundScheduler to run the booking housekeeping sweep
(expire unpaid holds, complete elapsed services) on a fixed interval.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from bay_booking.core.clock import Clock, system_clock
from bay_booking.core.config import HOUSEKEEPING_INTERVAL_SECONDS
from bay_booking.db.session import SessionLocal
from bay_booking.services.housekeeping import run_housekeeping
from bay_booking.services.notifier import BayChangeNotifier, default_notifier

logger = logging.getLogger(__name__)

JOB_ID = "booking_housekeeping"


def housekeeping_tick(
    session_factory=SessionLocal,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> None:
    """One sweep in its own session. Errors are logged, never raised into the scheduler."""
    db = session_factory()
    try:
        result = run_housekeeping(db, clock=clock, notifier=notifier)
        if result.changed:
            logger.info(
                "Housekeeping tick: %d expired, %d completed.",
                result.expired,
                result.completed,
            )
    except Exception:
        db.rollback()
        logger.exception("Unhandled error in housekeeping job.")
    finally:
        db.close()


def start_scheduler(interval_seconds: int = HOUSEKEEPING_INTERVAL_SECONDS) -> BackgroundScheduler:
    """Create, configure, and start the background housekeeping scheduler.

    Returns the scheduler instance so the caller can shut it down.
    """
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        housekeeping_tick,
        trigger="interval",
        seconds=interval_seconds,
        id=JOB_ID,
        name="Expire payment holds and complete elapsed bookings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Housekeeping scheduler started (every %d s).", interval_seconds)
    return scheduler
