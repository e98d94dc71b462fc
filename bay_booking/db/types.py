"""Custom SQLAlchemy column types."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, TypeDecorator

from bay_booking.core.clock import as_utc


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC on every backend.

    SQLite drops tzinfo on the way in and returns naive values, which would
    make them incomparable with the aware values produced by the clock.
    Values are normalised to UTC before binding and re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        value = as_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> datetime | None:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
