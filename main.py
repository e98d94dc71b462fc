"""FastAPI entrypoint for the bay booking engine.

This file stays intentionally small:
- `bay_booking/routes/` for customer and staff endpoints
- `bay_booking/services/` for the booking lifecycle, waitlist and housekeeping
- `bay_booking/db/` for SQLAlchemy models, sessions and serializable transactions
- `bay_booking/scheduler/` for the APScheduler housekeeping ticker
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.exceptions import HTTPException, RequestValidationError

from bay_booking.core.config import HOUSEKEEPING_ENABLED
from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.exceptions import (
    domain_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from bay_booking.core.middleware import RequestContextMiddleware
from bay_booking.db.init_db import init_db
from bay_booking.routes import admin, bookings
from bay_booking.scheduler.housekeeper import start_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize app resources before serving traffic."""
    init_db()
    logger.info("Database tables initialized.")

    scheduler = None
    if HOUSEKEEPING_ENABLED:
        try:
            scheduler = start_scheduler()
        except Exception:
            logger.exception("Failed to start housekeeping scheduler.")

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Housekeeping scheduler shut down.")


app = FastAPI(
    title="Bay Booking API",
    version="0.1.0",
    description="Service-bay allocation, booking lifecycle and waitlist engine.",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(DomainException, domain_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

app.include_router(bookings.router)
app.include_router(admin.router)


@app.get("/", tags=["health"])
def root() -> dict[str, str]:
    """Simple status endpoint for uptime checks."""
    return {"status": "Bay Booking Engine Running"}
