"""Stable error codes returned to API callers."""

from typing import Final


class ErrorCode:
    VALIDATION_ERROR: Final = "VALIDATION_ERROR"

    LOCATION_NOT_FOUND: Final = "LOCATION_NOT_FOUND"
    BAY_NOT_FOUND: Final = "BAY_NOT_FOUND"
    BOOKING_NOT_FOUND: Final = "BOOKING_NOT_FOUND"
    CAR_NOT_FOUND: Final = "CAR_NOT_FOUND"
    SERVICE_NOT_FOUND: Final = "SERVICE_NOT_FOUND"
    ADDON_NOT_FOUND: Final = "ADDON_NOT_FOUND"
    WAITLIST_NOT_FOUND: Final = "WAITLIST_NOT_FOUND"

    FORBIDDEN: Final = "FORBIDDEN"

    SLOT_CONFLICT: Final = "SLOT_CONFLICT"
    CAR_CONFLICT: Final = "CAR_CONFLICT"
    INVALID_STATUS: Final = "INVALID_STATUS"
    BAY_CLOSED: Final = "BAY_CLOSED"
    PAYMENT_CONFLICT: Final = "PAYMENT_CONFLICT"

    PAYMENT_EXPIRED: Final = "PAYMENT_EXPIRED"


NOT_FOUND_CODES = frozenset(
    {
        ErrorCode.LOCATION_NOT_FOUND,
        ErrorCode.BAY_NOT_FOUND,
        ErrorCode.BOOKING_NOT_FOUND,
        ErrorCode.CAR_NOT_FOUND,
        ErrorCode.SERVICE_NOT_FOUND,
        ErrorCode.ADDON_NOT_FOUND,
        ErrorCode.WAITLIST_NOT_FOUND,
    }
)

CONFLICT_CODES = frozenset(
    {
        ErrorCode.SLOT_CONFLICT,
        ErrorCode.CAR_CONFLICT,
        ErrorCode.INVALID_STATUS,
        ErrorCode.BAY_CLOSED,
        ErrorCode.PAYMENT_CONFLICT,
        ErrorCode.PAYMENT_EXPIRED,
    }
)


def http_status_for(code: str) -> int:
    """Map a domain error code onto the HTTP status used by the API layer."""
    if code in NOT_FOUND_CODES:
        return 404
    if code == ErrorCode.FORBIDDEN:
        return 403
    if code in CONFLICT_CODES:
        return 409
    return 400
