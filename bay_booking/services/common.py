"""Lookups and guards shared by the booking and waitlist services."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from bay_booking.allocation.durations import service_duration_or_default
from bay_booking.core.config import PAST_GRACE_SECONDS
from bay_booking.core.domain_exceptions import DomainException, forbidden, validation_error
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import (
    Booking,
    BookingAddon,
    BookingStatus,
    Car,
    Client,
    ClientLocation,
    Service,
)
from bay_booking.schemas.booking import AddonInput

TERMINAL_STATUSES = (BookingStatus.CANCELED, BookingStatus.COMPLETED)


def get_booking_or_raise(db: Session, booking_id: int) -> Booking:
    booking = db.scalar(
        select(Booking)
        .options(
            selectinload(Booking.service),
            selectinload(Booking.addons),
            selectinload(Booking.payments),
        )
        .where(Booking.id == booking_id)
    )
    if booking is None:
        raise DomainException(
            code=ErrorCode.BOOKING_NOT_FOUND,
            message="Booking not found.",
        )
    return booking


def get_car_or_raise(db: Session, car_id: int) -> Car:
    car = db.get(Car, car_id)
    if car is None:
        raise DomainException(code=ErrorCode.CAR_NOT_FOUND, message="Car not found.")
    return car


def get_service_or_raise(db: Session, service_id: int, location_id: int) -> Service:
    service = db.scalar(
        select(Service)
        .where(Service.id == service_id)
        .where(Service.location_id == location_id)
        .where(Service.is_active.is_(True))
    )
    if service is None:
        raise DomainException(
            code=ErrorCode.SERVICE_NOT_FOUND,
            message=f"Service {service_id} not found at this location.",
        )
    return service


def ensure_client_exists(db: Session, client_id: int) -> None:
    if db.get(Client, client_id) is None:
        raise validation_error(f"Unknown client {client_id}.")


def claim_car(car: Car, client_id: int | None) -> None:
    """A car linked to one client may not be booked by another; an unlinked car is adopted."""
    if client_id is None:
        return
    if car.client_id is not None and car.client_id != client_id:
        raise forbidden("This car belongs to another client.")
    if car.client_id is None:
        car.client_id = client_id


def touch_client_location(
    db: Session,
    *,
    client_id: int,
    location_id: int,
    now: datetime,
    enforce_block: bool = True,
) -> ClientLocation:
    link = db.scalar(
        select(ClientLocation)
        .where(ClientLocation.client_id == client_id)
        .where(ClientLocation.location_id == location_id)
    )
    if link is None:
        link = ClientLocation(client_id=client_id, location_id=location_id, is_blocked=False)
        db.add(link)
    elif enforce_block and link.is_blocked:
        raise forbidden("Client is blocked at this location.")

    link.last_visit_at = now
    return link


def build_addon_rows(
    db: Session,
    location_id: int,
    addons: Iterable[AddonInput],
) -> list[BookingAddon]:
    """Snapshot price and duration for each requested add-on; repeated services are merged."""
    rows: dict[int, BookingAddon] = {}
    for item in addons:
        existing = rows.get(item.service_id)
        if existing is not None:
            existing.qty += item.qty
            continue
        service = get_service_or_raise(db, item.service_id, location_id)
        rows[item.service_id] = BookingAddon(
            service_id=service.id,
            qty=item.qty,
            price_rub_snapshot=service.price_rub or 0,
            duration_min_snapshot=service_duration_or_default(service.duration_min),
        )
    return list(rows.values())


def ensure_not_in_past(start: datetime, now: datetime) -> None:
    if start < now - timedelta(seconds=PAST_GRACE_SECONDS):
        raise validation_error("Start time is in the past.")


def ensure_mutable(booking: Booking) -> None:
    if booking.status in TERMINAL_STATUSES:
        raise DomainException(
            code=ErrorCode.INVALID_STATUS,
            message=f"Booking is {booking.status} and can no longer be changed.",
        )


def ensure_staff_scope(location_id: int, staff_location_id: int) -> None:
    if location_id != staff_location_id:
        raise forbidden("This record belongs to another location.")
