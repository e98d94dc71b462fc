"""Slot allocation primitives: block lengths, overlap checks and the capacity gate."""

from bay_booking.allocation.capacity import (
    CapacityDecision,
    check_capacity,
    require_bay_active,
)
from bay_booking.allocation.conflicts import (
    BusyInterval,
    busy_intervals,
    ensure_slot_free,
    holds_capacity,
    overlaps,
)
from bay_booking.allocation.durations import (
    booking_block_minutes,
    booking_interval,
    compute_duration,
)

__all__ = [
    "BusyInterval",
    "CapacityDecision",
    "booking_block_minutes",
    "booking_interval",
    "busy_intervals",
    "check_capacity",
    "compute_duration",
    "ensure_slot_free",
    "holds_capacity",
    "overlaps",
    "require_bay_active",
]
