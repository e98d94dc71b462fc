"""SQLAlchemy ORM models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bay_booking.db.session import Base
from bay_booking.db.types import UTCDateTime


class BookingStatus:
    PENDING_PAYMENT = "PENDING_PAYMENT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class WaitlistStatus:
    WAITING = "WAITING"
    CONVERTED = "CONVERTED"
    CANCELED = "CANCELED"


class PaymentKind:
    DEPOSIT = "DEPOSIT"
    REMAINING = "REMAINING"
    EXTRA = "EXTRA"
    REFUND = "REFUND"


class PaymentMethodType:
    CASH = "CASH"
    CARD = "CARD"
    CONTRACT = "CONTRACT"


class Location(Base):
    """A physical site with a fixed number of service bays."""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    bays_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
    )

    bays: Mapped[list["Bay"]] = relationship(
        back_populates="location",
        cascade="all, delete-orphan",
        order_by="Bay.number",
    )


class Bay(Base):
    """A service stall at a location, toggled open/closed by staff."""

    __tablename__ = "bays"
    __table_args__ = (
        UniqueConstraint("location_id", "number", name="uq_bays_location_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id"),
        nullable=False,
        index=True,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    closed_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    location: Mapped["Location"] = relationship(back_populates="bays")


class Client(Base):
    """A customer of the business."""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
    )

    cars: Mapped[list["Car"]] = relationship(back_populates="client")


class Car(Base):
    """A vehicle, optionally linked to the customer who owns it."""

    __tablename__ = "cars"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
        index=True,
    )
    plate: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    client: Mapped[Optional["Client"]] = relationship(back_populates="cars")


class ClientLocation(Base):
    """Per-location relationship of a client (visit tracking and blocking)."""

    __tablename__ = "client_locations"
    __table_args__ = (
        UniqueConstraint("client_id", "location_id", name="uq_client_locations_client_location"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id"), nullable=False, index=True)
    is_blocked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    last_visit_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class Service(Base):
    """A catalog entry at a location: a base service or an add-on."""

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_rub: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_addon: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )


class Booking(Base):
    """
    A reservation of one bay for one car over ``[starts_at, starts_at + block)``.

    ``bay_id`` holds the bay *number* at the location, not a foreign key to a
    bay row; it is validated against the bays table when written.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_location_bay_starts_at", "location_id", "bay_id", "starts_at"),
        Index("ix_bookings_car_starts_at", "car_id", "starts_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id"),
        nullable=False,
        index=True,
    )
    bay_id: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_bay_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    car_id: Mapped[int] = mapped_column(ForeignKey("cars.id"), nullable=False)
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
        index=True,
    )
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)

    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    buffer_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=BookingStatus.PENDING_PAYMENT,
        server_default=text("'PENDING_PAYMENT'"),
        index=True,
    )
    payment_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    deposit_rub: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
    )

    service: Mapped["Service"] = relationship()
    car: Mapped["Car"] = relationship()
    addons: Mapped[list["BookingAddon"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingAddon.id",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="Payment.paid_at",
    )


class BookingAddon(Base):
    """An add-on attached to a booking with price/duration snapshotted at attach time."""

    __tablename__ = "booking_addons"
    __table_args__ = (
        UniqueConstraint("booking_id", "service_id", name="uq_booking_addons_booking_service"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_rub_snapshot: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_min_snapshot: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    booking: Mapped["Booking"] = relationship(back_populates="addons")
    service: Mapped["Service"] = relationship()


class Payment(Base):
    """A payment recorded against a booking; one row per kind."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("booking_id", "kind", name="uq_payments_booking_kind"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_rub: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    method_type: Mapped[str] = mapped_column(String(16), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    booking: Mapped["Booking"] = relationship(back_populates="payments")


class WaitlistRequest(Base):
    """
    A desired (not reserved) time/bay for a customer who could not be allocated.

    ``desired_bay_id`` is a bay number or None for "any bay".
    """

    __tablename__ = "waitlist_requests"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
        index=True,
    )
    car_id: Mapped[int] = mapped_column(ForeignKey("cars.id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)

    desired_date_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    desired_bay_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=WaitlistStatus.WAITING,
        server_default=text("'WAITING'"),
    )
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    invited_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    converted_booking_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bookings.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
    )

    service: Mapped["Service"] = relationship()
    car: Mapped["Car"] = relationship()
