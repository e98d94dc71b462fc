"""Overlap detection against bookings that currently hold capacity."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from bay_booking.allocation.durations import booking_interval, interval_end
from bay_booking.core.config import CONFLICT_WINDOW_HOURS
from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import Booking, BookingStatus

logger = logging.getLogger(__name__)

BUSY_STATUSES = (BookingStatus.ACTIVE, BookingStatus.PENDING_PAYMENT)


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: touching edges do not overlap."""
    return a_start < b_end and b_start < a_end


def holds_capacity(booking: Booking, now: datetime) -> bool:
    """ACTIVE bookings and unexpired payment holds occupy their slot."""
    if booking.status == BookingStatus.ACTIVE:
        return True
    if booking.status == BookingStatus.PENDING_PAYMENT:
        return booking.payment_due_at is not None and booking.payment_due_at > now
    return False


def _nearby_bookings(
    db: Session,
    *filters,
    window_start: datetime,
    window_end: datetime,
    exclude_booking_id: int | None,
) -> list[Booking]:
    query = (
        select(Booking)
        .options(selectinload(Booking.service), selectinload(Booking.addons))
        .where(*filters)
        .where(Booking.status.in_(BUSY_STATUSES))
        .where(Booking.starts_at >= window_start)
        .where(Booking.starts_at <= window_end)
        .order_by(Booking.starts_at.asc())
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return list(db.scalars(query).all())


def _first_overlap(
    candidates: list[Booking],
    start: datetime,
    end: datetime,
    now: datetime,
) -> Booking | None:
    for booking in candidates:
        if not holds_capacity(booking, now):
            continue
        b_start, b_end = booking_interval(booking)
        if overlaps(start, end, b_start, b_end):
            return booking
    return None


def ensure_slot_free(
    db: Session,
    *,
    location_id: int,
    bay_number: int,
    car_id: int,
    start: datetime,
    duration_min: int,
    now: datetime,
    exclude_booking_id: int | None = None,
) -> None:
    """
    Raise a conflict when ``[start, start + duration)`` collides with a booking
    on the same bay, or with any booking of the same car at any location.

    Must run inside the transaction that performs the subsequent write.
    """
    end = interval_end(start, duration_min)
    window = timedelta(hours=CONFLICT_WINDOW_HOURS)
    window_start = start - window
    window_end = end + window

    bay_nearby = _nearby_bookings(
        db,
        Booking.location_id == location_id,
        Booking.bay_id == bay_number,
        window_start=window_start,
        window_end=window_end,
        exclude_booking_id=exclude_booking_id,
    )
    clash = _first_overlap(bay_nearby, start, end, now)
    if clash is not None:
        logger.info(
            "Bay collision",
            extra={"location_id": location_id, "bay": bay_number, "booking_id": clash.id},
        )
        raise DomainException(
            code=ErrorCode.SLOT_CONFLICT,
            message="Selected time slot is already booked.",
        )

    car_nearby = _nearby_bookings(
        db,
        Booking.car_id == car_id,
        window_start=window_start,
        window_end=window_end,
        exclude_booking_id=exclude_booking_id,
    )
    clash = _first_overlap(car_nearby, start, end, now)
    if clash is not None:
        logger.info(
            "Vehicle collision",
            extra={"car_id": car_id, "booking_id": clash.id},
        )
        raise DomainException(
            code=ErrorCode.CAR_CONFLICT,
            message="This car already has a booking at this time.",
        )


def busy_intervals(
    db: Session,
    *,
    location_id: int,
    bay_number: int,
    window_from: datetime,
    window_to: datetime,
    now: datetime,
) -> list[BusyInterval]:
    """Intervals on a bay that hold capacity and intersect ``[window_from, window_to)``."""
    window = timedelta(hours=CONFLICT_WINDOW_HOURS)
    nearby = _nearby_bookings(
        db,
        Booking.location_id == location_id,
        Booking.bay_id == bay_number,
        window_start=window_from - window,
        window_end=window_to + window,
        exclude_booking_id=None,
    )

    intervals = []
    for booking in nearby:
        if not holds_capacity(booking, now):
            continue
        start, end = booking_interval(booking)
        if overlaps(start, end, window_from, window_to):
            intervals.append(BusyInterval(start=start, end=end))
    return intervals
