"""Booking lifecycle: create, pay, add-ons, move, start, finish, cancel."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from bay_booking.allocation.capacity import (
    check_capacity,
    get_bay_or_raise,
    require_bay_active,
)
from bay_booking.allocation.conflicts import BusyInterval, busy_intervals, ensure_slot_free
from bay_booking.allocation.durations import (
    addon_duration_sum,
    booking_block_minutes,
    booking_interval,
    compute_duration,
    service_duration_or_default,
)
from bay_booking.core.clock import Clock, system_clock
from bay_booking.core.config import MAX_NOTE_LENGTH, PAYMENT_HOLD_MINUTES
from bay_booking.core.domain_exceptions import DomainException, forbidden, validation_error
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.bootstrap import get_location_or_raise, resolve_location
from bay_booking.db.models import (
    Booking,
    BookingAddon,
    BookingStatus,
    Payment,
    PaymentKind,
)
from bay_booking.db.transactions import run_serializable
from bay_booking.schemas.booking import (
    AttachAddonRequest,
    ConfirmPaymentRequest,
    CreateBookingRequest,
    MoveBookingRequest,
    StaffBookingRequest,
    StaffMarkRequest,
)
from bay_booking.services.common import (
    build_addon_rows,
    claim_car,
    ensure_client_exists,
    ensure_mutable,
    ensure_not_in_past,
    ensure_staff_scope,
    get_booking_or_raise,
    get_car_or_raise,
    get_service_or_raise,
    touch_client_location,
)
from bay_booking.services.housekeeping import PAYMENT_EXPIRED_REASON, run_housekeeping
from bay_booking.services.notifier import BayChangeNotifier, default_notifier, notify_bays
from bay_booking.services.waitlist_service import (
    WaitlistDiversion,
    divert_to_waitlist,
)

logger = logging.getLogger(__name__)

USER_CANCELED_PENDING_REASON = "USER_CANCELED_PENDING"
USER_CANCELED_REASON = "USER_CANCELED"
ALL_BAYS_CLOSED_ADMIN = "ALL_BAYS_CLOSED_ADMIN"


def _invalid_status(message: str) -> DomainException:
    return DomainException(code=ErrorCode.INVALID_STATUS, message=message)


def _notify_diversion(notifier: BayChangeNotifier, diversion: WaitlistDiversion) -> None:
    notifier.notify_bay_changed(diversion.entry.location_id, diversion.notify_bay)


def compute_busy_slots(
    db: Session,
    location_id: int,
    bay_number: int,
    window_from: datetime,
    window_to: datetime,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> list[BusyInterval]:
    """Intervals on one bay that currently hold capacity within ``[window_from, window_to)``."""
    if window_to <= window_from:
        raise validation_error("'to' must be after 'from'.")

    run_housekeeping(db, clock=clock, notifier=notifier)
    get_location_or_raise(db, location_id)
    get_bay_or_raise(db, location_id, bay_number)

    return busy_intervals(
        db,
        location_id=location_id,
        bay_number=bay_number,
        window_from=window_from,
        window_to=window_to,
        now=clock(),
    )


def list_bookings(
    db: Session,
    client_id: int,
    *,
    include_canceled: bool = False,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> list[Booking]:
    run_housekeeping(db, clock=clock, notifier=notifier)

    query = (
        select(Booking)
        .options(
            selectinload(Booking.service),
            selectinload(Booking.addons),
            selectinload(Booking.payments),
        )
        .where(Booking.client_id == client_id)
        .order_by(Booking.starts_at.desc(), Booking.id.desc())
    )
    if not include_canceled:
        query = query.where(Booking.status != BookingStatus.CANCELED)
    return list(db.scalars(query).all())


def get_booking(db: Session, booking_id: int) -> Booking:
    return get_booking_or_raise(db, booking_id)


def create_booking(
    db: Session,
    request: CreateBookingRequest,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking | WaitlistDiversion:
    """
    Reserve a bay for a customer's car behind a payment hold.

    Returns a PENDING_PAYMENT booking, or a ``WaitlistDiversion`` when the
    location has no open bay or the chosen bay is closed. Overlaps on the bay
    or on the car raise a conflict.
    """
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()
    ensure_not_in_past(request.start_time, now)

    location = resolve_location(db, request.location_id)
    if location.bays_count <= 0:
        raise validation_error("Location has no bays configured.")
    location_id = location.id

    def work() -> Booking | WaitlistDiversion:
        ensure_client_exists(db, request.client_id)
        car = get_car_or_raise(db, request.car_id)
        claim_car(car, request.client_id)
        service = get_service_or_raise(db, request.service_id, location_id)
        addon_rows = build_addon_rows(db, location_id, request.addons)

        decision = check_capacity(db, location_id, request.bay_number)
        if not decision.is_open:
            return divert_to_waitlist(
                db,
                location_id=location_id,
                client_id=request.client_id,
                car_id=car.id,
                service_id=service.id,
                desired_date_time=request.start_time,
                desired_bay_id=request.requested_bay_number,
                reason=decision.reason,
                comment=request.comment,
                now=now,
                closed_bay=None if decision.all_closed else request.bay_number,
            )

        touch_client_location(
            db,
            client_id=request.client_id,
            location_id=location_id,
            now=now,
        )

        duration = compute_duration(
            service_duration_or_default(service.duration_min),
            addon_duration_sum(addon_rows),
            request.buffer_min,
        )
        ensure_slot_free(
            db,
            location_id=location_id,
            bay_number=request.bay_number,
            car_id=car.id,
            start=request.start_time,
            duration_min=duration,
            now=now,
        )

        booking = Booking(
            location_id=location_id,
            bay_id=request.bay_number,
            requested_bay_id=request.requested_bay_number,
            car_id=car.id,
            client_id=request.client_id,
            service_id=service.id,
            starts_at=request.start_time,
            buffer_min=request.buffer_min,
            status=BookingStatus.PENDING_PAYMENT,
            payment_due_at=now + timedelta(minutes=PAYMENT_HOLD_MINUTES),
            deposit_rub=request.deposit_rub,
            comment=request.comment,
            created_at=now,
        )
        booking.addons.extend(addon_rows)
        db.add(booking)
        db.flush()
        return booking

    result = run_serializable(db, work, operation="create_booking")

    if isinstance(result, WaitlistDiversion):
        db.refresh(result.entry)
        _notify_diversion(notifier, result)
        return result

    db.refresh(result)
    logger.info(
        "Booking created",
        extra={
            "booking_id": result.id,
            "location_id": result.location_id,
            "bay": result.bay_id,
        },
    )
    notifier.notify_bay_changed(result.location_id, result.bay_id)
    return result


def create_staff_booking(
    db: Session,
    request: StaffBookingRequest,
    *,
    staff_location_id: int,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking | WaitlistDiversion:
    """Booking taken by staff: ACTIVE at once, same capacity and overlap rules."""
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()
    ensure_not_in_past(request.start_time, now)
    get_location_or_raise(db, staff_location_id)

    def work() -> Booking | WaitlistDiversion:
        car = get_car_or_raise(db, request.car_id)
        if request.client_id is not None:
            ensure_client_exists(db, request.client_id)
            claim_car(car, request.client_id)
        client_id = request.client_id if request.client_id is not None else car.client_id
        service = get_service_or_raise(db, request.service_id, staff_location_id)
        addon_rows = build_addon_rows(db, staff_location_id, request.addons)

        decision = check_capacity(db, staff_location_id, request.bay_number)
        if not decision.is_open:
            if decision.all_closed:
                reason = ALL_BAYS_CLOSED_ADMIN
            else:
                reason = f"BAY_CLOSED_ADMIN:{request.bay_number}:{decision.reason}"
            return divert_to_waitlist(
                db,
                location_id=staff_location_id,
                client_id=client_id,
                car_id=car.id,
                service_id=service.id,
                desired_date_time=request.start_time,
                desired_bay_id=request.bay_number,
                reason=reason,
                comment=request.comment,
                now=now,
                closed_bay=None if decision.all_closed else request.bay_number,
            )

        if client_id is not None:
            touch_client_location(
                db,
                client_id=client_id,
                location_id=staff_location_id,
                now=now,
                enforce_block=False,
            )

        duration = compute_duration(
            service_duration_or_default(service.duration_min),
            addon_duration_sum(addon_rows),
            request.buffer_min,
        )
        ensure_slot_free(
            db,
            location_id=staff_location_id,
            bay_number=request.bay_number,
            car_id=car.id,
            start=request.start_time,
            duration_min=duration,
            now=now,
        )

        booking = Booking(
            location_id=staff_location_id,
            bay_id=request.bay_number,
            requested_bay_id=request.bay_number,
            car_id=car.id,
            client_id=client_id,
            service_id=service.id,
            starts_at=request.start_time,
            buffer_min=request.buffer_min,
            status=BookingStatus.ACTIVE,
            payment_due_at=None,
            deposit_rub=0,
            comment=request.comment,
            created_at=now,
        )
        booking.addons.extend(addon_rows)
        db.add(booking)
        db.flush()
        return booking

    result = run_serializable(db, work, operation="create_staff_booking")

    if isinstance(result, WaitlistDiversion):
        db.refresh(result.entry)
        _notify_diversion(notifier, result)
        return result

    db.refresh(result)
    logger.info(
        "Staff booking created",
        extra={"booking_id": result.id, "location_id": result.location_id, "bay": result.bay_id},
    )
    notifier.notify_bay_changed(result.location_id, result.bay_id)
    return result


def _expire_hold(
    db: Session,
    booking: Booking,
    now: datetime,
    notifier: BayChangeNotifier,
) -> DomainException:
    booking.status = BookingStatus.CANCELED
    booking.canceled_at = now
    booking.cancel_reason = PAYMENT_EXPIRED_REASON
    db.commit()

    logger.info("Payment hold expired on confirmation", extra={"booking_id": booking.id})
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return DomainException(
        code=ErrorCode.PAYMENT_EXPIRED,
        message="Payment window has expired; the booking was canceled.",
    )


def _record_additional_payment(
    db: Session,
    booking: Booking,
    request: ConfirmPaymentRequest,
    now: datetime,
) -> Booking:
    """REMAINING / EXTRA / REFUND: one row per kind, no status change."""
    if booking.status == BookingStatus.CANCELED:
        raise _invalid_status("Booking is canceled.")
    if request.amount_rub is None:
        raise validation_error(f"amount_rub is required for a {request.kind} payment.")
    if any(payment.kind == request.kind for payment in booking.payments):
        raise DomainException(
            code=ErrorCode.PAYMENT_CONFLICT,
            message=f"A {request.kind} payment is already recorded.",
        )

    try:
        booking.payments.append(
            Payment(
                kind=request.kind,
                amount_rub=request.amount_rub,
                method=request.method,
                method_type=request.resolved_method_type(),
                paid_at=now,
            )
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainException(
            code=ErrorCode.PAYMENT_CONFLICT,
            message=f"A {request.kind} payment is already recorded.",
        ) from exc

    db.refresh(booking)
    logger.info(
        "Payment recorded",
        extra={"booking_id": booking.id, "kind": request.kind, "amount_rub": request.amount_rub},
    )
    return booking


def confirm_payment(
    db: Session,
    booking_id: int,
    request: ConfirmPaymentRequest,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """
    Confirm the deposit of a PENDING_PAYMENT booking and make it ACTIVE.

    Already-ACTIVE bookings are returned unchanged. A hold whose deadline has
    passed is canceled with reason PAYMENT_EXPIRED and the call fails.
    """
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()
    booking = get_booking_or_raise(db, booking_id)

    if request.kind != PaymentKind.DEPOSIT:
        return _record_additional_payment(db, booking, request, now)

    if booking.status == BookingStatus.CANCELED:
        if booking.cancel_reason == PAYMENT_EXPIRED_REASON:
            raise DomainException(
                code=ErrorCode.PAYMENT_EXPIRED,
                message="Payment window has expired; the booking was canceled.",
            )
        raise _invalid_status("Booking is canceled.")
    if booking.status == BookingStatus.COMPLETED:
        raise _invalid_status("Booking is already completed.")
    if booking.status == BookingStatus.ACTIVE:
        return booking

    if booking.payment_due_at is None or booking.payment_due_at <= now:
        raise _expire_hold(db, booking, now, notifier)
    if booking.starts_at <= now:
        raise _invalid_status("Booking start time has already passed.")

    amount = request.amount_rub if request.amount_rub is not None else booking.deposit_rub
    try:
        booking.payments.append(
            Payment(
                kind=PaymentKind.DEPOSIT,
                amount_rub=amount,
                method=request.method,
                method_type=request.resolved_method_type(),
                paid_at=now,
            )
        )
        booking.status = BookingStatus.ACTIVE
        booking.payment_due_at = None
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainException(
            code=ErrorCode.PAYMENT_CONFLICT,
            message="Deposit is already recorded.",
        ) from exc

    db.refresh(booking)
    logger.info(
        "Payment confirmed",
        extra={"booking_id": booking.id, "amount_rub": amount},
    )
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking


def attach_addon(
    db: Session,
    booking_id: int,
    request: AttachAddonRequest,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """Add (or increase) an add-on; the longer block must still fit around its neighbours."""
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()

    def work() -> Booking:
        booking = get_booking_or_raise(db, booking_id)
        ensure_mutable(booking)
        service = get_service_or_raise(db, request.service_id, booking.location_id)

        existing = next(
            (addon for addon in booking.addons if addon.service_id == service.id),
            None,
        )
        per_unit = service_duration_or_default(service.duration_min)
        if existing is None:
            extra_min = per_unit * request.qty
        else:
            # The merged row is re-snapshotted from the current catalog.
            extra_min = per_unit * (existing.qty + request.qty) - addon_duration_sum([existing])

        ensure_slot_free(
            db,
            location_id=booking.location_id,
            bay_number=booking.bay_id,
            car_id=booking.car_id,
            start=booking.starts_at,
            duration_min=booking_block_minutes(booking, extra_addon_min=extra_min),
            now=now,
            exclude_booking_id=booking.id,
        )

        if existing is None:
            booking.addons.append(
                BookingAddon(
                    service_id=service.id,
                    qty=request.qty,
                    price_rub_snapshot=service.price_rub or 0,
                    duration_min_snapshot=per_unit,
                )
            )
        else:
            existing.qty += request.qty
            existing.price_rub_snapshot = service.price_rub or 0
            existing.duration_min_snapshot = per_unit
        db.flush()
        return booking

    booking = run_serializable(db, work, operation="attach_addon")
    db.refresh(booking)

    logger.info(
        "Add-on attached",
        extra={"booking_id": booking.id, "service_id": request.service_id, "qty": request.qty},
    )
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking


def detach_addon(
    db: Session,
    booking_id: int,
    service_id: int,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    run_housekeeping(db, clock=clock, notifier=notifier)

    booking = get_booking_or_raise(db, booking_id)
    ensure_mutable(booking)
    addon = next((item for item in booking.addons if item.service_id == service_id), None)
    if addon is None:
        raise DomainException(
            code=ErrorCode.ADDON_NOT_FOUND,
            message="Add-on is not attached to this booking.",
        )

    try:
        booking.addons.remove(addon)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info("Add-on detached", extra={"booking_id": booking.id, "service_id": service_id})
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking


def move_booking(
    db: Session,
    booking_id: int,
    request: MoveBookingRequest,
    *,
    staff_location_id: int,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """Reschedule and/or re-bay a booking after the customer has been informed."""
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()
    ensure_not_in_past(request.new_start, now)
    moved_from: list[tuple[int, int]] = []

    def work() -> Booking:
        moved_from.clear()
        booking = get_booking_or_raise(db, booking_id)
        ensure_staff_scope(booking.location_id, staff_location_id)
        ensure_mutable(booking)

        old_bay = booking.bay_id
        new_bay = request.new_bay_number or old_bay
        if new_bay != old_bay:
            require_bay_active(db, booking.location_id, new_bay)

        ensure_slot_free(
            db,
            location_id=booking.location_id,
            bay_number=new_bay,
            car_id=booking.car_id,
            start=request.new_start,
            duration_min=booking_block_minutes(booking),
            now=now,
            exclude_booking_id=booking.id,
        )

        moved_from.append((booking.location_id, old_bay))
        booking.starts_at = request.new_start
        booking.bay_id = new_bay
        booking.admin_note = f"MOVE: {request.justification}"[:MAX_NOTE_LENGTH]
        db.flush()
        return booking

    booking = run_serializable(db, work, operation="move_booking")
    db.refresh(booking)

    logger.info(
        "Booking moved",
        extra={"booking_id": booking.id, "bay": booking.bay_id, "justification": request.justification},
    )
    notify_bays(notifier, {*moved_from, (booking.location_id, booking.bay_id)})
    return booking


def start_booking(
    db: Session,
    booking_id: int,
    request: StaffMarkRequest,
    *,
    staff_location_id: int,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """Mark the car as in service; an unpaid hold is promoted to ACTIVE."""
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()

    booking = get_booking_or_raise(db, booking_id)
    ensure_staff_scope(booking.location_id, staff_location_id)
    if booking.status == BookingStatus.CANCELED:
        raise _invalid_status("Booking is canceled.")
    if booking.status == BookingStatus.COMPLETED:
        raise _invalid_status("Booking is already completed.")
    require_bay_active(db, booking.location_id, booking.bay_id)

    try:
        if booking.status == BookingStatus.PENDING_PAYMENT:
            booking.status = BookingStatus.ACTIVE
            booking.payment_due_at = None
        if booking.started_at is None:
            booking.started_at = request.at or now
        if request.admin_note:
            booking.admin_note = request.admin_note
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info("Service started", extra={"booking_id": booking.id})
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking


def finish_booking(
    db: Session,
    booking_id: int,
    request: StaffMarkRequest,
    *,
    staff_location_id: int,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()

    booking = get_booking_or_raise(db, booking_id)
    ensure_staff_scope(booking.location_id, staff_location_id)
    if booking.status == BookingStatus.CANCELED:
        raise _invalid_status("Booking is canceled.")

    at = request.at or now
    try:
        if booking.started_at is None:
            booking.started_at = at
        if booking.finished_at is None:
            booking.finished_at = at
        booking.status = BookingStatus.COMPLETED
        booking.payment_due_at = None
        if request.admin_note:
            booking.admin_note = request.admin_note
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info("Service finished", extra={"booking_id": booking.id})
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    requesting_client_id: int,
    *,
    clock: Clock = system_clock,
    notifier: BayChangeNotifier = default_notifier,
) -> Booking:
    """Client cancellation before the service starts; repeated calls are no-ops."""
    run_housekeeping(db, clock=clock, notifier=notifier)
    now = clock()

    booking = get_booking_or_raise(db, booking_id)
    if booking.client_id != requesting_client_id:
        raise forbidden("Booking belongs to another client.")
    if booking.status == BookingStatus.CANCELED:
        return booking
    if booking.status == BookingStatus.COMPLETED:
        raise _invalid_status("Completed booking cannot be canceled.")

    start, end = booking_interval(booking)
    if end <= now:
        raise _invalid_status("Booking has already ended.")
    if start <= now or booking.started_at is not None:
        raise _invalid_status("Booking has already started.")

    if booking.status == BookingStatus.PENDING_PAYMENT:
        reason = USER_CANCELED_PENDING_REASON
    else:
        reason = USER_CANCELED_REASON

    try:
        booking.status = BookingStatus.CANCELED
        booking.canceled_at = now
        booking.cancel_reason = reason
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info("Booking canceled", extra={"booking_id": booking.id, "reason": reason})
    notifier.notify_bay_changed(booking.location_id, booking.bay_id)
    return booking
