"""Waitlist: non-reserving requests recorded when no bay can be allocated."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from bay_booking.allocation.capacity import require_bay_active
from bay_booking.allocation.conflicts import ensure_slot_free
from bay_booking.allocation.durations import compute_duration, service_duration_or_default
from bay_booking.core.clock import Clock, system_clock
from bay_booking.core.config import DEFAULT_BUFFER_MIN
from bay_booking.core.domain_exceptions import DomainException, forbidden
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import Booking, BookingStatus, WaitlistRequest, WaitlistStatus
from bay_booking.db.transactions import run_serializable
from bay_booking.schemas.booking import ConvertWaitlistRequest
from bay_booking.services.common import (
    ensure_not_in_past,
    ensure_staff_scope,
    get_service_or_raise,
)
from bay_booking.services.housekeeping import run_housekeeping
from bay_booking.services.notifier import BayChangeNotifier, default_notifier

logger = logging.getLogger(__name__)

CLIENT_CANCELED_REASON = "CLIENT_CANCELED"
ANY_BAY_FALLBACK = 1


@dataclass(frozen=True)
class WaitlistDiversion:
    """Outcome of a creation request that could not be allocated a bay."""

    entry: WaitlistRequest
    reason: str
    # Closed bay the request targeted; None when the whole location was closed.
    closed_bay: int | None = None

    @property
    def notify_bay(self) -> int:
        return self.closed_bay or notification_bay(self.entry)


def notification_bay(entry: WaitlistRequest) -> int:
    return entry.desired_bay_id or ANY_BAY_FALLBACK


def divert_to_waitlist(
    db: Session,
    *,
    location_id: int,
    client_id: int | None,
    car_id: int,
    service_id: int,
    desired_date_time: datetime,
    desired_bay_id: int | None,
    reason: str,
    comment: str | None,
    now: datetime,
    closed_bay: int | None = None,
) -> WaitlistDiversion:
    """Record a WAITING entry in the caller's transaction; no Booking row is written."""
    entry = WaitlistRequest(
        location_id=location_id,
        client_id=client_id,
        car_id=car_id,
        service_id=service_id,
        desired_date_time=desired_date_time,
        desired_bay_id=desired_bay_id,
        status=WaitlistStatus.WAITING,
        reason=reason,
        comment=comment,
        created_at=now,
    )
    db.add(entry)
    db.flush()

    logger.info(
        "Request diverted to waitlist",
        extra={"waitlist_id": entry.id, "location_id": location_id, "reason": reason},
    )
    return WaitlistDiversion(entry=entry, reason=reason, closed_bay=closed_bay)


def get_waitlist_entry_or_raise(db: Session, waitlist_id: int) -> WaitlistRequest:
    entry = db.get(WaitlistRequest, waitlist_id)
    if entry is None:
        raise DomainException(
            code=ErrorCode.WAITLIST_NOT_FOUND,
            message="Waitlist entry not found.",
        )
    return entry


def list_waitlist_for_client(
    db: Session,
    client_id: int,
    *,
    only_waiting: bool = True,
) -> list[WaitlistRequest]:
    query = (
        select(WaitlistRequest)
        .where(WaitlistRequest.client_id == client_id)
        .order_by(WaitlistRequest.created_at.desc(), WaitlistRequest.id.desc())
    )
    if only_waiting:
        query = query.where(WaitlistRequest.status == WaitlistStatus.WAITING)
    return list(db.scalars(query).all())


def list_waitlist_day(db: Session, location_id: int, day: date) -> list[WaitlistRequest]:
    """Entries of a location created on the given UTC day, oldest first."""
    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)
    return list(
        db.scalars(
            select(WaitlistRequest)
            .where(WaitlistRequest.location_id == location_id)
            .where(WaitlistRequest.created_at >= day_start)
            .where(WaitlistRequest.created_at < day_end)
            .order_by(WaitlistRequest.created_at.asc(), WaitlistRequest.id.asc())
        ).all()
    )


def cancel_waitlist_entry(
    db: Session,
    waitlist_id: int,
    requesting_client_id: int,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> WaitlistRequest:
    run_housekeeping(db, clock=clock, notifier=notifier)

    entry = get_waitlist_entry_or_raise(db, waitlist_id)
    if entry.client_id != requesting_client_id:
        raise forbidden("Waitlist entry belongs to another client.")
    if entry.status != WaitlistStatus.WAITING:
        return entry

    entry.status = WaitlistStatus.CANCELED
    entry.reason = CLIENT_CANCELED_REASON
    db.commit()
    db.refresh(entry)

    logger.info("Waitlist entry canceled", extra={"waitlist_id": entry.id})
    notifier.notify_bay_changed(entry.location_id, notification_bay(entry))
    return entry


def convert_waitlist_entry(
    db: Session,
    waitlist_id: int,
    request: ConvertWaitlistRequest,
    *,
    staff_location_id: int,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """
    Turn a WAITING entry into an ACTIVE booking on a concrete bay and time.

    The booking insert and the entry's CONVERTED stamp commit together; when
    the bay is closed or the slot is taken the entry stays WAITING.
    """
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()

    def work() -> Booking:
        entry = get_waitlist_entry_or_raise(db, waitlist_id)
        ensure_staff_scope(entry.location_id, staff_location_id)
        if entry.status != WaitlistStatus.WAITING:
            raise DomainException(
                code=ErrorCode.INVALID_STATUS,
                message=f"Waitlist entry is {entry.status}.",
            )

        bay_number = request.bay_number or entry.desired_bay_id or ANY_BAY_FALLBACK
        start = request.start_time or entry.desired_date_time
        ensure_not_in_past(start, now)
        require_bay_active(db, entry.location_id, bay_number)

        service = get_service_or_raise(db, entry.service_id, entry.location_id)
        duration = compute_duration(
            service_duration_or_default(service.duration_min),
            0,
            DEFAULT_BUFFER_MIN,
        )
        ensure_slot_free(
            db,
            location_id=entry.location_id,
            bay_number=bay_number,
            car_id=entry.car_id,
            start=start,
            duration_min=duration,
            now=now,
        )

        booking = Booking(
            location_id=entry.location_id,
            bay_id=bay_number,
            requested_bay_id=entry.desired_bay_id,
            car_id=entry.car_id,
            client_id=entry.client_id,
            service_id=service.id,
            starts_at=start,
            buffer_min=DEFAULT_BUFFER_MIN,
            status=BookingStatus.ACTIVE,
            payment_due_at=None,
            deposit_rub=0,
            comment=entry.comment,
            created_at=now,
        )
        db.add(booking)
        db.flush()

        entry.status = WaitlistStatus.CONVERTED
        entry.converted_booking_id = booking.id
        entry.invited_at = now
        return booking

    booking = run_serializable(db, work, operation="convert_waitlist_entry")
    db.refresh(booking)

    logger.info(
        "Waitlist entry converted",
        extra={"waitlist_id": waitlist_id, "booking_id": booking.id},
    )
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking
