"""Staff routes, scoped to the caller's location via the X-Location-ID header."""

from datetime import date

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from bay_booking.core.clock import Clock
from bay_booking.db.session import get_db
from bay_booking.routes.deps import get_clock, get_notifier, get_staff_location_id
from bay_booking.schemas.booking import (
    BayCloseRequest,
    BayResponse,
    BookingResponse,
    ConvertWaitlistRequest,
    HousekeepingResponse,
    MoveBookingRequest,
    StaffBookingRequest,
    StaffMarkRequest,
    WaitlistResponse,
)
from bay_booking.schemas.common import APIResponse
from bay_booking.services import bay_service, booking_service, waitlist_service
from bay_booking.services.housekeeping import run_housekeeping
from bay_booking.services.notifier import BayChangeNotifier
from bay_booking.services.waitlist_service import WaitlistDiversion

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/bookings",
    status_code=201,
    response_model=APIResponse[BookingResponse | WaitlistResponse],
)
def create_staff_booking(
    payload: StaffBookingRequest,
    response: Response,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    result = booking_service.create_staff_booking(
        db=db,
        request=payload,
        staff_location_id=location_id,
        clock=clock,
        notifier=notifier,
    )
    if isinstance(result, WaitlistDiversion):
        response.status_code = 202
        return APIResponse(
            success=True,
            result_type="WAITLIST",
            data=WaitlistResponse.from_entry(result.entry),
        )
    return APIResponse(
        success=True,
        result_type="BOOKING",
        data=BookingResponse.from_booking(result),
    )


@router.post("/bookings/{booking_id}/start", response_model=APIResponse[BookingResponse])
def start_booking(
    booking_id: int,
    payload: StaffMarkRequest | None = None,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.start_booking(
        db=db,
        booking_id=booking_id,
        request=payload or StaffMarkRequest(),
        staff_location_id=location_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/bookings/{booking_id}/finish", response_model=APIResponse[BookingResponse])
def finish_booking(
    booking_id: int,
    payload: StaffMarkRequest | None = None,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.finish_booking(
        db=db,
        booking_id=booking_id,
        request=payload or StaffMarkRequest(),
        staff_location_id=location_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/bookings/{booking_id}/move", response_model=APIResponse[BookingResponse])
def move_booking(
    booking_id: int,
    payload: MoveBookingRequest,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = booking_service.move_booking(
        db=db,
        booking_id=booking_id,
        request=payload,
        staff_location_id=location_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.get("/bays", response_model=APIResponse[list[BayResponse]])
def list_bays(
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
):
    bays = bay_service.list_bays(db=db, location_id=location_id)
    return APIResponse(success=True, data=[BayResponse.from_bay(bay) for bay in bays])


@router.post("/bays/{bay_number}/close", response_model=APIResponse[BayResponse])
def close_bay(
    bay_number: int,
    payload: BayCloseRequest,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    bay = bay_service.close_bay(
        db=db,
        location_id=location_id,
        bay_number=bay_number,
        reason=payload.reason,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BayResponse.from_bay(bay))


@router.post("/bays/{bay_number}/open", response_model=APIResponse[BayResponse])
def open_bay(
    bay_number: int,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    bay = bay_service.open_bay(
        db=db,
        location_id=location_id,
        bay_number=bay_number,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BayResponse.from_bay(bay))


@router.get("/waitlist", response_model=APIResponse[list[WaitlistResponse]])
def waitlist_day(
    day: date | None = None,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    entries = waitlist_service.list_waitlist_day(
        db=db,
        location_id=location_id,
        day=day or clock().date(),
    )
    return APIResponse(success=True, data=[WaitlistResponse.from_entry(entry) for entry in entries])


@router.post("/waitlist/{waitlist_id}/convert", response_model=APIResponse[BookingResponse])
def convert_waitlist_entry(
    waitlist_id: int,
    payload: ConvertWaitlistRequest | None = None,
    location_id: int = Depends(get_staff_location_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    booking = waitlist_service.convert_waitlist_entry(
        db=db,
        waitlist_id=waitlist_id,
        request=payload or ConvertWaitlistRequest(),
        staff_location_id=location_id,
        clock=clock,
        notifier=notifier,
    )
    return APIResponse(success=True, data=BookingResponse.from_booking(booking))


@router.post("/housekeeping", response_model=APIResponse[HousekeepingResponse])
def trigger_housekeeping(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: BayChangeNotifier = Depends(get_notifier),
):
    result = run_housekeeping(db, clock=clock, notifier=notifier)
    return APIResponse(
        success=True,
        data=HousekeepingResponse(expired=result.expired, completed=result.completed),
    )
