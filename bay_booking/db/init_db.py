"""Database initialization utilities."""

import logging

from sqlalchemy import inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bay_booking.db import models  # noqa: F401 - ensure model metadata is registered
from bay_booking.db.models import Bay, Location
from bay_booking.db.session import Base, engine

logger = logging.getLogger(__name__)


def _table_exists(bind: Engine, table_name: str) -> bool:
    return table_name in inspect(bind).get_table_names()


def ensure_location_bays(db: Session) -> int:
    """Create missing bay rows ``1..bays_count`` for every location; returns how many were added."""
    created = 0
    for location in db.scalars(select(Location).order_by(Location.id.asc())).all():
        existing = set(
            db.scalars(select(Bay.number).where(Bay.location_id == location.id)).all()
        )
        for number in range(1, (location.bays_count or 0) + 1):
            if number in existing:
                continue
            db.add(Bay(location_id=location.id, number=number, is_active=True))
            created += 1

    if created:
        db.commit()
        logger.info("Created %d missing bay row(s).", created)
    return created


def init_db(bind: Engine = engine) -> None:
    """Create the schema and make sure each location owns its bay rows."""
    try:
        Base.metadata.create_all(bind=bind)
        if not _table_exists(bind, "bays"):
            raise RuntimeError("bays table is missing after metadata creation.")

        with Session(bind) as db:
            ensure_location_bays(db)
    except SQLAlchemyError:
        logger.exception("Database initialization failed.")
        raise
