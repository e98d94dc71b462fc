"""Customer-facing booking and waitlist routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from bay_booking.core.clock import Clock, as_utc
from bay_booking.db.session import get_db
from bay_booking.routes.deps import get_clock, get_notifier
from bay_booking.schemas.booking import (
    AttachAddonRequest,
    BookingResponse,
    BusySlot,
    ConfirmPaymentRequest,
    CreateBookingRequest,
    WaitlistResponse,
)
from bay_booking.schemas.common import APIResponse
from bay_booking.services import booking_service, waitlist_service
from bay_booking.services.notifier import BayChangeNotifier
from bay_booking.services.waitlist_service import WaitlistDiversion

router = APIRouter(prefix="/bookings", tags=["bookings"])

RESULT_BOOKING = "BOOKING"
RESULT_WAITLIST = "WAITLIST"


@router.get("/busy", response_model=APIResponse[list[BusySlot]])
def busy_slots(
    location_id: int,
    bay_number: int,
    window_from: datetime = Query(alias="from"),
    window_to: datetime = Query(alias="to"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    intervals = booking_service.compute_busy_slots(
        db=db,
        location_id=location_id,
        bay_number=bay_number,
        window_from=as_utc(window_from),
        window_to=as_utc(window_to),
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(
        success=True,
        data=[BusySlot(start=interval.start, end=interval.end) for interval in intervals],
    )


@router.get("/", response_model=APIResponse[list[BookingResponse]])
def list_bookings(
    client_id: int,
    include_canceled: bool = False,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    bookings = booking_service.list_bookings(
        db=db,
        client_id=client_id,
        include_canceled=include_canceled,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(
        success=True,
        data=[BookingResponse.from_booking(booking) for booking in bookings],
    )


@router.post(
    "/",
    status_code=201,
    response_model=APIResponse[BookingResponse | WaitlistResponse],
)
def create_booking(
    payload: CreateBookingRequest,
    response: Response,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    result = booking_service.create_booking(db=db, request=payload, clock=clock, notifier=notifier)

    if isinstance(result, WaitlistDiversion):
        response.status_code = 202
        return APIResponse(
            success=True,
            result_type=RESULT_WAITLIST,
            data=WaitlistResponse.from_entry(result.entry),
        )

    return APIResponse(
        success=True,
        result_type=RESULT_BOOKING,
        data=BookingResponse.from_booking(result),
    )


@router.get("/waitlist", response_model=APIResponse[list[WaitlistResponse]])
def list_my_waitlist(
    client_id: int,
    only_waiting: bool = True,
    db: Session = Depends(get_db),
):
    entries = waitlist_service.list_waitlist_for_client(
        db=db,
        client_id=client_id,
        only_waiting=only_waiting,
    )
    return APIResponse(success=True, data=[WaitlistResponse.from_entry(entry) for entry in entries])


@router.post("/waitlist/{waitlist_id}/cancel", response_model=APIResponse[WaitlistResponse])
def cancel_waitlist_entry(
    waitlist_id: int,
    client_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    entry = waitlist_service.cancel_waitlist_entry(
        db=db,
        waitlist_id=waitlist_id,
        requesting_client_id=client_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=WaitlistResponse.from_entry(entry))


@router.get("/{booking_id}", response_model=APIResponse[BookingResponse])
def get_booking(booking_id: int, db: Session = Depends(get_db)):
    booking = booking_service.get_booking(db=db, booking_id=booking_id)
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/{booking_id}/pay", response_model=APIResponse[BookingResponse])
def confirm_payment(
    booking_id: int,
    payload: ConfirmPaymentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.confirm_payment(
        db=db,
        booking_id=booking_id,
        request=payload,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/{booking_id}/cancel", response_model=APIResponse[BookingResponse])
def cancel_booking(
    booking_id: int,
    client_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.cancel_booking(
        db=db,
        booking_id=booking_id,
        requesting_client_id=client_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/{booking_id}/addons", response_model=APIResponse[BookingResponse])
def attach_addon(
    booking_id: int,
    payload: AttachAddonRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.attach_addon(
        db=db,
        booking_id=booking_id,
        request=payload,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.delete("/{booking_id}/addons/{service_id}", response_model=APIResponse[BookingResponse])
def detach_addon(
    booking_id: int,
    service_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.detach_addon(
        db=db,
        booking_id=booking_id,
        service_id=service_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))
