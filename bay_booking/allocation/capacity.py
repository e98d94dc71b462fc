"""Capacity gate: decides whether a request may reach the allocator."""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import Bay

ALL_BAYS_CLOSED = "ALL_BAYS_CLOSED"
BAY_CLOSED = "BAY_CLOSED"


@dataclass(frozen=True)
class CapacityDecision:
    is_open: bool
    all_closed: bool = False
    reason: str | None = None
    bay: Bay | None = None


def any_bay_active(db: Session, location_id: int) -> bool:
    return db.scalar(
        select(Bay.id)
        .where(Bay.location_id == location_id)
        .where(Bay.is_active.is_(True))
        .limit(1)
    ) is not None


def get_bay(db: Session, location_id: int, bay_number: int) -> Bay | None:
    return db.scalar(
        select(Bay)
        .where(Bay.location_id == location_id)
        .where(Bay.number == bay_number)
    )


def get_bay_or_raise(db: Session, location_id: int, bay_number: int) -> Bay:
    bay = get_bay(db, location_id, bay_number)
    if bay is None:
        raise DomainException(
            code=ErrorCode.BAY_NOT_FOUND,
            message=f"Bay {bay_number} not found.",
        )
    return bay


def check_capacity(db: Session, location_id: int, bay_number: int) -> CapacityDecision:
    """
    A location with no open bay rejects every request; otherwise the target
    bay itself must be open. An unknown bay is an error, not a diversion.
    """
    if not any_bay_active(db, location_id):
        return CapacityDecision(is_open=False, all_closed=True, reason=ALL_BAYS_CLOSED)

    bay = get_bay_or_raise(db, location_id, bay_number)
    if not bay.is_active:
        return CapacityDecision(is_open=False, reason=bay.closed_reason or BAY_CLOSED, bay=bay)
    return CapacityDecision(is_open=True, bay=bay)


def require_bay_active(db: Session, location_id: int, bay_number: int) -> Bay:
    """Staff-side variant: a closed bay is a conflict rather than a diversion."""
    bay = get_bay_or_raise(db, location_id, bay_number)
    if not bay.is_active:
        raise DomainException(
            code=ErrorCode.BAY_CLOSED,
            message=f"Bay {bay_number} is closed.",
        )
    return bay
