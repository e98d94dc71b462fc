"""Staff administration of bays: list, close, reopen."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bay_booking.allocation.capacity import get_bay_or_raise
from bay_booking.core.clock import Clock, system_clock
from bay_booking.db.bootstrap import get_location_or_raise
from bay_booking.db.models import Bay
from bay_booking.services.notifier import BayChangeNotifier, default_notifier

logger = logging.getLogger(__name__)


def list_bays(db: Session, location_id: int) -> list[Bay]:
    get_location_or_raise(db, location_id)
    return list(
        db.scalars(
            select(Bay).where(Bay.location_id == location_id).order_by(Bay.number.asc())
        ).all()
    )


def close_bay(
    db: Session,
    location_id: int,
    bay_number: int,
    reason: str,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Bay:
    """Stop new allocations on a bay. Existing bookings on it are left untouched."""
    bay = get_bay_or_raise(db, location_id, bay_number)
    try:
        bay.is_active = False
        bay.closed_reason = reason
        bay.closed_at = clock()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(bay)
    logger.info(
        "Bay closed",
        extra={"location_id": location_id, "bay": bay_number, "reason": reason},
    )
    notifier.notify_bay_changed(location_id, bay_number)
    return bay


def open_bay(
    db: Session,
    location_id: int,
    bay_number: int,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Bay:
    bay = get_bay_or_raise(db, location_id, bay_number)
    try:
        bay.is_active = True
        bay.closed_reason = None
        bay.reopened_at = clock()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(bay)
    logger.info("Bay reopened", extra={"location_id": location_id, "bay": bay_number})
    notifier.notify_bay_changed(location_id, bay_number)
    return bay
