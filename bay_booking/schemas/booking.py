from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from bay_booking.allocation.durations import booking_block_minutes, interval_end
from bay_booking.core.clock import as_utc
from bay_booking.core.config import (
    DEFAULT_BUFFER_MIN,
    DEFAULT_DEPOSIT_RUB,
    MAX_AMOUNT_RUB,
    MAX_BAY_NUMBER,
    MAX_BUFFER_MIN,
    MAX_NOTE_LENGTH,
)
from bay_booking.db.models import (
    Bay,
    Booking,
    BookingStatus,
    PaymentKind,
    PaymentMethodType,
    WaitlistRequest,
)

PAYMENT_KINDS = (
    PaymentKind.DEPOSIT,
    PaymentKind.REMAINING,
    PaymentKind.EXTRA,
    PaymentKind.REFUND,
)
METHOD_TYPES = (PaymentMethodType.CASH, PaymentMethodType.CARD, PaymentMethodType.CONTRACT)


def _normalize_note(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:MAX_NOTE_LENGTH]


def _utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


# ---------------------------------------------------------------- requests


class AddonInput(BaseModel):
    service_id: int
    qty: int = Field(default=1, gt=0)


class CreateBookingRequest(BaseModel):
    car_id: int
    service_id: int
    start_time: datetime
    client_id: int
    location_id: int | None = None
    bay_number: int = Field(default=1, ge=1, le=MAX_BAY_NUMBER)
    # What the customer asked for; None means "any bay".
    requested_bay_number: int | None = Field(default=None, ge=1, le=MAX_BAY_NUMBER)
    addons: list[AddonInput] = Field(default_factory=list)
    comment: str | None = None
    buffer_min: int = Field(default=DEFAULT_BUFFER_MIN, ge=0, le=MAX_BUFFER_MIN)
    deposit_rub: int = Field(default=DEFAULT_DEPOSIT_RUB, ge=0, le=MAX_AMOUNT_RUB)

    @field_validator("start_time")
    @classmethod
    def normalize_start_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("comment")
    @classmethod
    def normalize_comment(cls, value: str | None) -> str | None:
        return _normalize_note(value)


class StaffBookingRequest(BaseModel):
    """Booking taken by staff (e.g. by phone); created ACTIVE without a payment hold."""

    car_id: int
    service_id: int
    start_time: datetime
    bay_number: int = Field(ge=1, le=MAX_BAY_NUMBER)
    client_id: int | None = None
    addons: list[AddonInput] = Field(default_factory=list)
    comment: str | None = None
    buffer_min: int = Field(default=DEFAULT_BUFFER_MIN, ge=0, le=MAX_BUFFER_MIN)

    @field_validator("start_time")
    @classmethod
    def normalize_start_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("comment")
    @classmethod
    def normalize_comment(cls, value: str | None) -> str | None:
        return _normalize_note(value)


class ConfirmPaymentRequest(BaseModel):
    amount_rub: int | None = Field(default=None, ge=0, le=MAX_AMOUNT_RUB)
    method: str = "CARD"
    method_type: str | None = None
    kind: str = PaymentKind.DEPOSIT

    @field_validator("method")
    @classmethod
    def normalize_method(cls, value: str) -> str:
        return value.strip() or "CARD"

    @field_validator("kind")
    @classmethod
    def normalize_kind(cls, value: str) -> str:
        kind = value.strip().upper()
        if kind not in PAYMENT_KINDS:
            raise ValueError(f"kind must be one of {', '.join(PAYMENT_KINDS)}")
        return kind

    def resolved_method_type(self) -> str:
        """Explicit method type, else one inferred from the method name, else CARD."""
        for raw in (self.method_type, self.method):
            candidate = (raw or "").strip().upper()
            if candidate in METHOD_TYPES:
                return candidate
        return PaymentMethodType.CARD


class AttachAddonRequest(BaseModel):
    service_id: int
    qty: int = Field(default=1, gt=0)


class MoveBookingRequest(BaseModel):
    new_start: datetime
    new_bay_number: int | None = Field(default=None, ge=1, le=MAX_BAY_NUMBER)
    justification: str = Field(min_length=1, max_length=MAX_NOTE_LENGTH)
    acknowledged: bool = True

    @field_validator("new_start")
    @classmethod
    def normalize_start_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("justification")
    @classmethod
    def normalize_justification(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("justification is required")
        return value

    @field_validator("acknowledged")
    @classmethod
    def normalize_acknowledged(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("the customer must be informed before a move")
        return value


class StaffMarkRequest(BaseModel):
    """Start/finish payload: optional explicit timestamp and admin note."""

    at: datetime | None = None
    admin_note: str | None = None

    @field_validator("at")
    @classmethod
    def normalize_at_utc(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)

    @field_validator("admin_note")
    @classmethod
    def normalize_note(cls, value: str | None) -> str | None:
        return _normalize_note(value)


class ConvertWaitlistRequest(BaseModel):
    bay_number: int | None = Field(default=None, ge=1, le=MAX_BAY_NUMBER)
    start_time: datetime | None = None

    @field_validator("start_time")
    @classmethod
    def normalize_start_utc(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)


class BayCloseRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reason is required when closing a bay")
        return value


# --------------------------------------------------------------- responses


class AddonItem(BaseModel):
    service_id: int
    qty: int
    price_rub_snapshot: int
    duration_min_snapshot: int


class BookingResponse(BaseModel):
    booking_id: int
    location_id: int
    bay_number: int
    requested_bay_number: int | None
    car_id: int
    client_id: int | None
    service_id: int
    status: str
    starts_at: datetime
    ends_at: datetime
    block_minutes: int
    buffer_min: int
    payment_due_at: datetime | None
    started_at: datetime | None
    finished_at: datetime | None
    canceled_at: datetime | None
    cancel_reason: str | None
    comment: str | None
    addons: list[AddonItem]
    paid_total_rub: int
    effective_price_rub: int
    remaining_rub: int
    payment_status: str
    payment_badges: list[str]
    is_in_service: bool

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        block = booking_block_minutes(booking)
        paid_total = sum(
            -(payment.amount_rub or 0) if payment.kind == PaymentKind.REFUND else (payment.amount_rub or 0)
            for payment in booking.payments
        )
        base_price = booking.service.price_rub if booking.service else 0
        addons_price = sum(
            (addon.price_rub_snapshot or 0) * (addon.qty or 1) for addon in booking.addons
        )
        effective_price = max(base_price + addons_price, 0)

        if effective_price > 0 and paid_total >= effective_price:
            payment_status = "PAID"
        elif paid_total > 0:
            payment_status = "PARTIAL"
        else:
            payment_status = "UNPAID"

        badges: list[str] = []
        for payment in booking.payments:
            if payment.method_type not in badges:
                badges.append(payment.method_type)

        return cls(
            booking_id=booking.id,
            location_id=booking.location_id,
            bay_number=booking.bay_id,
            requested_bay_number=booking.requested_bay_id,
            car_id=booking.car_id,
            client_id=booking.client_id,
            service_id=booking.service_id,
            status=booking.status,
            starts_at=booking.starts_at,
            ends_at=interval_end(booking.starts_at, block),
            block_minutes=block,
            buffer_min=booking.buffer_min,
            payment_due_at=booking.payment_due_at,
            started_at=booking.started_at,
            finished_at=booking.finished_at,
            canceled_at=booking.canceled_at,
            cancel_reason=booking.cancel_reason,
            comment=booking.comment,
            addons=[
                AddonItem(
                    service_id=addon.service_id,
                    qty=addon.qty,
                    price_rub_snapshot=addon.price_rub_snapshot,
                    duration_min_snapshot=addon.duration_min_snapshot,
                )
                for addon in booking.addons
            ],
            paid_total_rub=paid_total,
            effective_price_rub=effective_price,
            remaining_rub=max(effective_price - paid_total, 0),
            payment_status=payment_status,
            payment_badges=badges,
            is_in_service=(
                booking.started_at is not None
                and booking.finished_at is None
                and booking.status not in (BookingStatus.CANCELED, BookingStatus.COMPLETED)
            ),
        )


class WaitlistResponse(BaseModel):
    waitlist_id: int
    location_id: int
    client_id: int | None
    car_id: int
    service_id: int
    desired_date_time: datetime
    desired_bay_number: int | None
    status: str
    reason: str | None
    comment: str | None
    converted_booking_id: int | None

    @classmethod
    def from_entry(cls, entry: WaitlistRequest) -> "WaitlistResponse":
        return cls(
            waitlist_id=entry.id,
            location_id=entry.location_id,
            client_id=entry.client_id,
            car_id=entry.car_id,
            service_id=entry.service_id,
            desired_date_time=entry.desired_date_time,
            desired_bay_number=entry.desired_bay_id,
            status=entry.status,
            reason=entry.reason,
            comment=entry.comment,
            converted_booking_id=entry.converted_booking_id,
        )


class BusySlot(BaseModel):
    start: datetime
    end: datetime


class BayResponse(BaseModel):
    number: int
    is_active: bool
    closed_reason: str | None
    closed_at: datetime | None
    reopened_at: datetime | None

    @classmethod
    def from_bay(cls, bay: Bay) -> "BayResponse":
        return cls(
            number=bay.number,
            is_active=bay.is_active,
            closed_reason=bay.closed_reason,
            closed_at=bay.closed_at,
            reopened_at=bay.reopened_at,
        )


class HousekeepingResponse(BaseModel):
    expired: int
    completed: int
