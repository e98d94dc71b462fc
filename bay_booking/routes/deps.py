"""Shared route dependencies: clock, notifier and staff location scope."""

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from bay_booking.core.clock import Clock, system_clock
from bay_booking.db.bootstrap import resolve_location_context
from bay_booking.db.session import get_db
from bay_booking.services.notifier import BayChangeNotifier, default_notifier


def get_clock() -> Clock:
    return system_clock


def get_notifier() -> BayChangeNotifier:
    return default_notifier


def get_staff_location_id(
    x_location_id: int | None = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    """Location of the calling staff member; the default location when the header is absent."""
    return resolve_location_context(db=db, location_id=x_location_id).location_id
