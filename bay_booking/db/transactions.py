"""Serializable units of work with a single retry on serialization failure."""

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.session import SQLITE_BEGIN_IMMEDIATE

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERIALIZATION_FAILURE_SQLSTATE = "40001"
MAX_ATTEMPTS = 2

_SERIALIZATION_SNIPPETS = (
    "could not serialize access",
    "database is locked",
)

SLOT_TAKEN_MESSAGE = "Selected time slot is already booked."


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == SERIALIZATION_FAILURE_SQLSTATE:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _SERIALIZATION_SNIPPETS)


def _begin_serializable(db: Session) -> None:
    # Isolation can only be chosen when the connection is first procured.
    if db.in_transaction():
        db.commit()
    if db.get_bind().dialect.name == "sqlite":
        # SQLite serializes writers; holding the write lock from BEGIN covers the reads.
        db.connection(execution_options={SQLITE_BEGIN_IMMEDIATE: True})
    else:
        db.connection(execution_options={"isolation_level": "SERIALIZABLE"})


def run_serializable(db: Session, work: Callable[[], T], *, operation: str) -> T:
    """
    Run ``work`` inside a SERIALIZABLE transaction and commit it.

    ``work`` must perform both the conflict reads and the writes so that a
    concurrent writer is rejected at commit time. Serialization failures are
    retried once; the second failure and unique-constraint violations are
    reported as a slot conflict. Domain exceptions raised by ``work`` roll the
    transaction back and propagate unchanged.
    """
    attempt = 1
    while True:
        _begin_serializable(db)
        try:
            result = work()
            db.commit()
            return result
        except DomainException:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            logger.info(
                "Unique constraint rejected write",
                extra={"operation": operation, "error": str(exc.orig)},
            )
            raise DomainException(
                code=ErrorCode.SLOT_CONFLICT,
                message=SLOT_TAKEN_MESSAGE,
            ) from exc
        except DBAPIError as exc:
            db.rollback()
            if not is_serialization_failure(exc):
                raise
            if attempt >= MAX_ATTEMPTS:
                logger.warning(
                    "Serialization failure after retry",
                    extra={"operation": operation, "attempt": attempt},
                )
                raise DomainException(
                    code=ErrorCode.SLOT_CONFLICT,
                    message=SLOT_TAKEN_MESSAGE,
                ) from exc
            logger.info(
                "Serialization failure, retrying",
                extra={"operation": operation, "attempt": attempt},
            )
            attempt += 1
