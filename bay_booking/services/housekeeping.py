"""Time-driven booking transitions: expire unpaid holds, complete elapsed services."""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from bay_booking.allocation.durations import booking_interval
from bay_booking.core.clock import Clock, system_clock
from bay_booking.db.models import Booking, BookingStatus
from bay_booking.services.notifier import BayChangeNotifier, default_notifier, notify_bays

logger = logging.getLogger(__name__)

PAYMENT_EXPIRED_REASON = "PAYMENT_EXPIRED"


@dataclass(frozen=True)
class HousekeepingResult:
    expired: int = 0
    completed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.expired or self.completed)


def expire_pending_payments(
    db: Session,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> int:
    """Cancel every PENDING_PAYMENT booking whose payment deadline has passed."""
    now = clock()
    rows = db.execute(
        select(Booking.id, Booking.location_id, Booking.bay_id)
        .where(Booking.status == BookingStatus.PENDING_PAYMENT)
        .where(Booking.payment_due_at.is_not(None))
        .where(Booking.payment_due_at < now)
    ).all()
    if not rows:
        return 0

    db.execute(
        update(Booking)
        .where(Booking.id.in_([row.id for row in rows]))
        .where(Booking.status == BookingStatus.PENDING_PAYMENT)
        .values(
            status=BookingStatus.CANCELED,
            canceled_at=now,
            cancel_reason=PAYMENT_EXPIRED_REASON,
        )
    )
    db.commit()

    logger.info("Expired %d unpaid booking hold(s).", len(rows))
    notify_bays(notifier, {(row.location_id, row.bay_id) for row in rows})
    return len(rows)


def auto_complete_past_active(
    db: Session,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> int:
    """Complete every ACTIVE booking whose block (with current add-ons) has elapsed."""
    now = clock()
    candidates = db.scalars(
        select(Booking)
        .options(selectinload(Booking.service), selectinload(Booking.addons))
        .where(Booking.status == BookingStatus.ACTIVE)
        .where(Booking.starts_at < now)
    ).all()

    finished = [booking for booking in candidates if booking_interval(booking)[1] < now]
    if not finished:
        return 0

    targets = {(booking.location_id, booking.bay_id) for booking in finished}
    db.execute(
        update(Booking)
        .where(Booking.id.in_([booking.id for booking in finished]))
        .where(Booking.status == BookingStatus.ACTIVE)
        .values(status=BookingStatus.COMPLETED)
    )
    db.commit()

    logger.info("Auto-completed %d booking(s).", len(finished))
    notify_bays(notifier, targets)
    return len(finished)


def run_housekeeping(
    db: Session,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> HousekeepingResult:
    """Both sweeps, in order. Idempotent: a second run right after changes nothing."""
    expired = expire_pending_payments(db, clock=clock, notifier=notifier)
    completed = auto_complete_past_active(db, clock=clock, notifier=notifier)
    return HousekeepingResult(expired=expired, completed=completed)
