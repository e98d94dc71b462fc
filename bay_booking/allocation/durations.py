"""Slot-length arithmetic on the scheduling grid."""

import math
from collections.abc import Iterable
from datetime import datetime, timedelta

from bay_booking.core.config import DEFAULT_SERVICE_DURATION_MIN, SLOT_STEP_MIN
from bay_booking.db.models import Booking, BookingAddon


def round_up_to_step(total_min: int, step_min: int = SLOT_STEP_MIN) -> int:
    if total_min <= 0:
        return 0
    return math.ceil(total_min / step_min) * step_min


def compute_duration(
    base_min: int,
    addons_min: int,
    buffer_min: int,
    step_min: int = SLOT_STEP_MIN,
) -> int:
    """Return the block length in minutes: base + add-ons + buffer, rounded up to the grid."""
    return round_up_to_step(base_min + addons_min + buffer_min, step_min)


def service_duration_or_default(duration_min: int | None) -> int:
    if isinstance(duration_min, int) and duration_min > 0:
        return duration_min
    return DEFAULT_SERVICE_DURATION_MIN


def addon_duration_sum(addons: Iterable[BookingAddon]) -> int:
    """Sum snapshotted add-on durations; invalid qty counts as 1, invalid duration as 0."""
    total = 0
    for addon in addons:
        qty = addon.qty if isinstance(addon.qty, int) and addon.qty > 0 else 1
        duration = addon.duration_min_snapshot
        if not isinstance(duration, int) or duration <= 0:
            duration = 0
        total += qty * duration
    return total


def booking_block_minutes(booking: Booking, extra_addon_min: int = 0) -> int:
    """Block length of a booking from its service, current add-ons and buffer."""
    base = service_duration_or_default(booking.service.duration_min if booking.service else None)
    return compute_duration(
        base,
        addon_duration_sum(booking.addons) + extra_addon_min,
        booking.buffer_min or 0,
    )


def interval_end(start: datetime, duration_min: int) -> datetime:
    return start + timedelta(minutes=duration_min)


def booking_interval(booking: Booking) -> tuple[datetime, datetime]:
    start = booking.starts_at
    return start, interval_end(start, booking_block_minutes(booking))
