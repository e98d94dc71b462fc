from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bay_booking.db.session import Base

# Import models so Base.metadata is populated for create_all.
import bay_booking.db.models  # noqa: F401
from bay_booking.db.models import (
    Bay,
    Booking,
    BookingAddon,
    BookingStatus,
    Car,
    Client,
    Location,
    Service,
)
from bay_booking.schemas.booking import CreateBookingRequest

T0 = datetime(2030, 3, 4, 8, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Deterministic clock; tests move it forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[int, int]] = []

    def notify_bay_changed(self, location_id: int, bay_number: int) -> None:
        self.events.append((location_id, bay_number))


@dataclass
class Seed:
    location: Location
    other_location: Location
    client: Client
    other_client: Client
    car: Car
    other_car: Car
    free_car: Car
    wash: Service
    polish: Service
    wax: Service
    remote_wash: Service


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, class_=Session)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def seed(db) -> Seed:
    """Main location with two open bays, a second single-bay location, clients, cars and services."""
    location = Location(name="Main", bays_count=2)
    other_location = Location(name="North", bays_count=1)
    db.add_all([location, other_location])
    db.flush()
    db.add_all(
        [
            Bay(location_id=location.id, number=1, is_active=True),
            Bay(location_id=location.id, number=2, is_active=True),
            Bay(location_id=other_location.id, number=1, is_active=True),
        ]
    )

    client = Client(name="Anna", phone="+70000000001")
    other_client = Client(name="Boris", phone="+70000000002")
    db.add_all([client, other_client])
    db.flush()

    car = Car(client_id=client.id, plate="A001AA", model="Lada Vesta")
    other_car = Car(client_id=other_client.id, plate="B002BB", model="Kia Rio")
    free_car = Car(client_id=None, plate="C003CC", model="Skoda Octavia")

    wash = Service(location_id=location.id, name="Full wash", duration_min=25, price_rub=1000)
    polish = Service(
        location_id=location.id, name="Polish", duration_min=30, price_rub=300, is_addon=True
    )
    wax = Service(
        location_id=location.id, name="Wax", duration_min=None, price_rub=200, is_addon=True
    )
    remote_wash = Service(
        location_id=other_location.id, name="Full wash", duration_min=30, price_rub=900
    )
    db.add_all([car, other_car, free_car, wash, polish, wax, remote_wash])
    db.commit()

    return Seed(
        location=location,
        other_location=other_location,
        client=client,
        other_client=other_client,
        car=car,
        other_car=other_car,
        free_car=free_car,
        wash=wash,
        polish=polish,
        wax=wax,
        remote_wash=remote_wash,
    )


@pytest.fixture
def booking_request(seed):
    """Factory for a valid client creation request at the main location."""

    def _make(start: datetime, **overrides) -> CreateBookingRequest:
        fields = {
            "car_id": seed.car.id,
            "service_id": seed.wash.id,
            "start_time": start,
            "client_id": seed.client.id,
            "location_id": seed.location.id,
            "bay_number": 1,
        }
        fields.update(overrides)
        return CreateBookingRequest(**fields)

    return _make


@pytest.fixture
def make_booking(db, seed):
    """Insert a booking row directly, bypassing the lifecycle checks."""

    def _make(
        start: datetime,
        *,
        bay: int = 1,
        car: Car | None = None,
        location: Location | None = None,
        service: Service | None = None,
        status: str = BookingStatus.ACTIVE,
        payment_due_at: datetime | None = None,
        buffer_min: int = 15,
        client_id: int | None = None,
        addons: list[BookingAddon] | None = None,
    ) -> Booking:
        car = car or seed.car
        booking = Booking(
            location_id=(location or seed.location).id,
            bay_id=bay,
            car_id=car.id,
            client_id=client_id if client_id is not None else car.client_id,
            service_id=(service or seed.wash).id,
            starts_at=start,
            buffer_min=buffer_min,
            status=status,
            payment_due_at=payment_due_at,
            deposit_rub=500,
            created_at=T0,
        )
        booking.addons.extend(addons or [])
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make
