"""Bootstrap helpers for location tenancy defaults."""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import Location


@dataclass(frozen=True)
class LocationContext:
    location_id: int


def get_default_location(db: Session) -> Location | None:
    """The oldest location, used when a caller does not name one."""
    return db.scalar(select(Location).order_by(Location.created_at.asc(), Location.id.asc()))


def get_location_or_raise(db: Session, location_id: int) -> Location:
    location = db.get(Location, location_id)
    if location is None:
        raise DomainException(
            code=ErrorCode.LOCATION_NOT_FOUND,
            message=f"Location {location_id} not found.",
        )
    return location


def resolve_location(db: Session, location_id: int | None) -> Location:
    if location_id is not None:
        return get_location_or_raise(db, location_id)

    location = get_default_location(db)
    if location is None:
        raise DomainException(
            code=ErrorCode.LOCATION_NOT_FOUND,
            message="No location is configured.",
        )
    return location


def resolve_location_context(db: Session, location_id: int | None) -> LocationContext:
    location = resolve_location(db, location_id)
    return LocationContext(location_id=location.id)
