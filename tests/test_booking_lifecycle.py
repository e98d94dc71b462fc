from datetime import timedelta

import pytest
from sqlalchemy import func, select

from bay_booking.core.domain_exceptions import DomainException
from bay_booking.core.error_codes import ErrorCode
from bay_booking.db.models import (
    Booking,
    BookingStatus,
    ClientLocation,
    PaymentKind,
    WaitlistStatus,
)
from bay_booking.schemas.booking import (
    AddonInput,
    AttachAddonRequest,
    BookingResponse,
    ConfirmPaymentRequest,
    MoveBookingRequest,
    StaffBookingRequest,
    StaffMarkRequest,
)
from bay_booking.services import bay_service, booking_service
from bay_booking.services.waitlist_service import WaitlistDiversion

from conftest import T0

START = T0 + timedelta(hours=2)


@pytest.fixture
def deps(clock, notifier):
    return {"clock": clock, "notifier": notifier}


@pytest.fixture
def create(db, booking_request, deps):
    def _create(start=START, **overrides):
        return booking_service.create_booking(db, booking_request(start, **overrides), **deps)

    return _create


def _booking_count(db) -> int:
    return db.scalar(select(func.count(Booking.id)))


def _code(exc_info) -> str:
    return exc_info.value.code


class TestCreateBooking:
    def test_creates_pending_hold(self, create, seed, notifier):
        booking = create()

        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.payment_due_at == T0 + timedelta(minutes=10)
        assert booking.starts_at == START
        assert booking.bay_id == 1
        assert booking.deposit_rub == 500
        assert notifier.events == [(seed.location.id, 1)]

    def test_block_includes_addons_and_buffer(self, create, seed):
        booking = create(addons=[AddonInput(service_id=seed.polish.id, qty=1)])

        view = BookingResponse.from_booking(booking)
        # 25 + 30 + 15 = 70 -> 90 on the grid.
        assert view.block_minutes == 90
        assert view.ends_at == START + timedelta(minutes=90)
        assert view.effective_price_rub == 1300
        assert view.payment_status == "UNPAID"

    def test_same_bay_overlap_is_slot_conflict(self, create, seed):
        create()

        with pytest.raises(DomainException) as exc_info:
            create(
                START + timedelta(minutes=30),
                car_id=seed.other_car.id,
                client_id=seed.other_client.id,
            )

        assert _code(exc_info) == ErrorCode.SLOT_CONFLICT

    def test_same_car_on_other_bay_is_car_conflict(self, create):
        create()

        with pytest.raises(DomainException) as exc_info:
            create(bay_number=2)

        assert _code(exc_info) == ErrorCode.CAR_CONFLICT

    def test_start_in_past_is_rejected(self, create):
        with pytest.raises(DomainException) as exc_info:
            create(T0 - timedelta(minutes=1))

        assert _code(exc_info) == ErrorCode.VALIDATION_ERROR

    def test_start_within_grace_is_accepted(self, create):
        assert create(T0 - timedelta(seconds=10)).status == BookingStatus.PENDING_PAYMENT

    def test_car_of_another_client_is_forbidden(self, create, seed):
        with pytest.raises(DomainException) as exc_info:
            create(car_id=seed.other_car.id)

        assert _code(exc_info) == ErrorCode.FORBIDDEN

    def test_unlinked_car_is_adopted(self, create, db, seed):
        create(car_id=seed.free_car.id)

        db.refresh(seed.free_car)
        assert seed.free_car.client_id == seed.client.id

    def test_blocked_client_is_forbidden(self, create, db, seed):
        db.add(ClientLocation(client_id=seed.client.id, location_id=seed.location.id, is_blocked=True))
        db.commit()

        with pytest.raises(DomainException) as exc_info:
            create()

        assert _code(exc_info) == ErrorCode.FORBIDDEN
        assert _booking_count(db) == 0

    def test_client_location_link_is_recorded(self, create, db, seed):
        create()

        link = db.scalar(select(ClientLocation).where(ClientLocation.client_id == seed.client.id))
        assert link.location_id == seed.location.id
        assert link.last_visit_at == T0

    def test_service_from_other_location_is_not_found(self, create, seed):
        with pytest.raises(DomainException) as exc_info:
            create(service_id=seed.remote_wash.id)

        assert _code(exc_info) == ErrorCode.SERVICE_NOT_FOUND

    def test_default_location_is_used_when_omitted(self, create, seed):
        assert create(location_id=None).location_id == seed.location.id

    def test_comment_is_normalized(self, create):
        assert create(comment="   ").comment is None
        assert len(create(START + timedelta(hours=3), comment="  x" * 300).comment) == 500


class TestClosedBayDiversion:
    def test_closed_bay_diverts_to_waitlist(self, create, db, seed, clock):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)

        result = create(requested_bay_number=1)

        assert isinstance(result, WaitlistDiversion)
        assert result.entry.status == WaitlistStatus.WAITING
        assert result.entry.desired_bay_id == 1
        assert result.entry.reason == "Maintenance"
        assert _booking_count(db) == 0

    def test_no_requested_bay_means_any(self, create, db, seed, clock):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)

        result = create()

        assert result.entry.desired_bay_id is None

    def test_diversion_notifies_the_closed_bay(self, create, db, seed, clock, notifier):
        bay_service.close_bay(db, seed.location.id, 2, "Lift repair", clock=clock)

        result = create(bay_number=2)

        assert result.entry.desired_bay_id is None
        assert notifier.events[-1] == (seed.location.id, 2)

    def test_all_closed_without_requested_bay_notifies_first_bay(self, create, db, seed, clock, notifier):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)
        bay_service.close_bay(db, seed.location.id, 2, "Holiday", clock=clock)

        create(bay_number=2)

        assert notifier.events[-1] == (seed.location.id, 1)

    def test_all_bays_closed(self, create, db, seed, clock):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)
        bay_service.close_bay(db, seed.location.id, 2, "Holiday", clock=clock)

        result = create(bay_number=2, requested_bay_number=2)

        assert result.reason == "ALL_BAYS_CLOSED"
        assert _booking_count(db) == 0


class TestConfirmPayment:
    def test_confirm_activates_and_records_deposit(self, create, db, deps, notifier, seed):
        booking = create()

        paid = booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(), **deps)

        assert paid.status == BookingStatus.ACTIVE
        assert paid.payment_due_at is None
        assert [(p.kind, p.amount_rub, p.method_type) for p in paid.payments] == [
            (PaymentKind.DEPOSIT, 500, "CARD")
        ]
        assert notifier.events[-1] == (seed.location.id, 1)

    def test_confirm_is_idempotent_for_active(self, create, db, deps):
        booking = create()
        booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(amount_rub=700), **deps)

        again = booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(), **deps)

        assert again.status == BookingStatus.ACTIVE
        assert len(again.payments) == 1
        assert again.payments[0].amount_rub == 700

    def test_expired_hold_is_canceled_and_payment_fails(self, create, db, deps, clock):
        booking = create()
        clock.advance(minutes=11)

        with pytest.raises(DomainException) as exc_info:
            booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(), **deps)

        assert _code(exc_info) == ErrorCode.PAYMENT_EXPIRED
        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELED
        assert booking.cancel_reason == "PAYMENT_EXPIRED"

    def test_deadline_reached_exactly_expires_on_confirmation(self, create, db, deps, clock):
        booking = create()
        clock.advance(minutes=10)

        with pytest.raises(DomainException) as exc_info:
            booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(), **deps)

        assert _code(exc_info) == ErrorCode.PAYMENT_EXPIRED
        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELED
        assert booking.canceled_at == T0 + timedelta(minutes=10)

    def test_start_already_passed(self, create, db, deps, clock):
        booking = create(T0 + timedelta(minutes=5))
        clock.advance(minutes=6)

        with pytest.raises(DomainException) as exc_info:
            booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(), **deps)

        assert _code(exc_info) == ErrorCode.INVALID_STATUS

    def test_additional_payment_kinds_once_each(self, create, db, deps):
        booking = create()
        booking_service.confirm_payment(db, booking.id, ConfirmPaymentRequest(method="cash"), **deps)

        booking = booking_service.confirm_payment(
            db,
            booking.id,
            ConfirmPaymentRequest(kind="remaining", amount_rub=500, method="Card terminal"),
            **deps,
        )

        view = BookingResponse.from_booking(booking)
        assert booking.status == BookingStatus.ACTIVE
        assert view.paid_total_rub == 1000
        assert view.payment_status == "PAID"
        assert sorted(view.payment_badges) == ["CARD", "CASH"]

        with pytest.raises(DomainException) as exc_info:
            booking_service.confirm_payment(
                db,
                booking.id,
                ConfirmPaymentRequest(kind="REMAINING", amount_rub=100),
                **deps,
            )
        assert _code(exc_info) == ErrorCode.PAYMENT_CONFLICT


class TestAddons:
    def test_attach_snapshots_and_merges_quantity(self, create, db, deps, seed):
        booking = create()

        booking_service.attach_addon(db, booking.id, AttachAddonRequest(service_id=seed.wax.id, qty=1), **deps)
        booking = booking_service.attach_addon(
            db, booking.id, AttachAddonRequest(service_id=seed.wax.id, qty=2), **deps
        )

        assert len(booking.addons) == 1
        addon = booking.addons[0]
        assert addon.qty == 3
        assert addon.duration_min_snapshot == 30
        assert addon.price_rub_snapshot == 200

    def test_merge_refreshes_snapshot_from_catalog(self, create, db, deps, seed):
        booking = create()
        booking_service.attach_addon(db, booking.id, AttachAddonRequest(service_id=seed.polish.id), **deps)
        seed.polish.duration_min = 45
        seed.polish.price_rub = 350
        db.commit()

        booking = booking_service.attach_addon(
            db, booking.id, AttachAddonRequest(service_id=seed.polish.id), **deps
        )

        addon = booking.addons[0]
        assert addon.qty == 2
        assert addon.duration_min_snapshot == 45
        assert addon.price_rub_snapshot == 350
        # 25 base + 2 x 45 + 15 buffer = 130, rounded up to 150.
        assert BookingResponse.from_booking(booking).block_minutes == 150

    def test_attach_that_would_overlap_neighbour_is_rejected(self, create, db, deps, seed, make_booking):
        booking = create()
        make_booking(START + timedelta(hours=1), car=seed.other_car)

        with pytest.raises(DomainException) as exc_info:
            booking_service.attach_addon(
                db, booking.id, AttachAddonRequest(service_id=seed.polish.id), **deps
            )

        assert _code(exc_info) == ErrorCode.SLOT_CONFLICT
        db.refresh(booking)
        assert booking.addons == []

    def test_attach_on_canceled_booking(self, db, deps, seed, make_booking):
        booking = make_booking(START, status=BookingStatus.CANCELED)

        with pytest.raises(DomainException) as exc_info:
            booking_service.attach_addon(
                db, booking.id, AttachAddonRequest(service_id=seed.polish.id), **deps
            )

        assert _code(exc_info) == ErrorCode.INVALID_STATUS

    def test_detach(self, create, db, deps, seed):
        booking = create(addons=[AddonInput(service_id=seed.polish.id)])

        booking = booking_service.detach_addon(db, booking.id, seed.polish.id, **deps)

        assert booking.addons == []
        with pytest.raises(DomainException) as exc_info:
            booking_service.detach_addon(db, booking.id, seed.polish.id, **deps)
        assert _code(exc_info) == ErrorCode.ADDON_NOT_FOUND


def _move(new_start, new_bay=None):
    return MoveBookingRequest(
        new_start=new_start,
        new_bay_number=new_bay,
        justification="Customer asked for a later slot",
        acknowledged=True,
    )


class TestMoveBooking:
    def test_move_to_other_bay_notifies_both(self, db, deps, seed, make_booking, notifier):
        booking = make_booking(START)

        moved = booking_service.move_booking(
            db,
            booking.id,
            _move(START + timedelta(hours=3), 2),
            staff_location_id=seed.location.id,
            **deps,
        )

        assert moved.bay_id == 2
        assert moved.starts_at == START + timedelta(hours=3)
        assert moved.admin_note.startswith("MOVE: ")
        assert sorted(notifier.events) == [(seed.location.id, 1), (seed.location.id, 2)]

    def test_move_onto_occupied_slot(self, db, deps, seed, make_booking):
        booking = make_booking(START)
        make_booking(START + timedelta(hours=3), car=seed.other_car)

        with pytest.raises(DomainException) as exc_info:
            booking_service.move_booking(
                db,
                booking.id,
                _move(START + timedelta(hours=3, minutes=30)),
                staff_location_id=seed.location.id,
                **deps,
            )

        assert _code(exc_info) == ErrorCode.SLOT_CONFLICT

    def test_move_overlapping_itself_is_allowed(self, db, deps, seed, make_booking):
        booking = make_booking(START)

        moved = booking_service.move_booking(
            db,
            booking.id,
            _move(START + timedelta(minutes=30)),
            staff_location_id=seed.location.id,
            **deps,
        )

        assert moved.starts_at == START + timedelta(minutes=30)

    def test_move_to_closed_bay(self, db, deps, seed, make_booking, clock):
        booking = make_booking(START)
        bay_service.close_bay(db, seed.location.id, 2, "Maintenance", clock=clock)

        with pytest.raises(DomainException) as exc_info:
            booking_service.move_booking(
                db, booking.id, _move(START, 2), staff_location_id=seed.location.id, **deps
            )

        assert _code(exc_info) == ErrorCode.BAY_CLOSED

    def test_staff_of_other_location_is_forbidden(self, db, deps, seed, make_booking):
        booking = make_booking(START)

        with pytest.raises(DomainException) as exc_info:
            booking_service.move_booking(
                db, booking.id, _move(START), staff_location_id=seed.other_location.id, **deps
            )

        assert _code(exc_info) == ErrorCode.FORBIDDEN

    def test_unacknowledged_move_fails_validation(self):
        with pytest.raises(ValueError):
            MoveBookingRequest(new_start=START, justification="x", acknowledged=False)
        with pytest.raises(ValueError):
            MoveBookingRequest(new_start=START, justification="   ")


class TestStartFinish:
    def test_start_promotes_pending(self, create, db, deps, seed):
        booking = create()

        started = booking_service.start_booking(
            db, booking.id, StaffMarkRequest(), staff_location_id=seed.location.id, **deps
        )

        assert started.status == BookingStatus.ACTIVE
        assert started.payment_due_at is None
        assert started.started_at == T0
        assert BookingResponse.from_booking(started).is_in_service

    def test_start_keeps_existing_started_at(self, db, deps, seed, make_booking, clock):
        booking = make_booking(START)
        booking_service.start_booking(
            db, booking.id, StaffMarkRequest(), staff_location_id=seed.location.id, **deps
        )
        clock.advance(minutes=5)

        again = booking_service.start_booking(
            db, booking.id, StaffMarkRequest(), staff_location_id=seed.location.id, **deps
        )

        assert again.started_at == T0

    def test_start_requires_open_bay(self, db, deps, seed, make_booking, clock):
        booking = make_booking(START)
        bay_service.close_bay(db, seed.location.id, 1, "Flooded", clock=clock)

        with pytest.raises(DomainException) as exc_info:
            booking_service.start_booking(
                db, booking.id, StaffMarkRequest(), staff_location_id=seed.location.id, **deps
            )

        assert _code(exc_info) == ErrorCode.BAY_CLOSED

    def test_start_canceled_is_invalid(self, db, deps, seed, make_booking):
        booking = make_booking(START, status=BookingStatus.CANCELED)

        with pytest.raises(DomainException) as exc_info:
            booking_service.start_booking(
                db, booking.id, StaffMarkRequest(), staff_location_id=seed.location.id, **deps
            )

        assert _code(exc_info) == ErrorCode.INVALID_STATUS

    def test_finish_without_start_sets_both_timestamps(self, db, deps, seed, make_booking):
        booking = make_booking(START)
        at = START + timedelta(minutes=50)

        finished = booking_service.finish_booking(
            db,
            booking.id,
            StaffMarkRequest(at=at, admin_note=" done "),
            staff_location_id=seed.location.id,
            **deps,
        )

        assert finished.status == BookingStatus.COMPLETED
        assert finished.started_at == at
        assert finished.finished_at == at
        assert finished.admin_note == "done"


class TestCancelBooking:
    def test_cancel_pending(self, create, db, deps, seed):
        booking = create()

        canceled = booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)

        assert canceled.status == BookingStatus.CANCELED
        assert canceled.cancel_reason == "USER_CANCELED_PENDING"
        assert canceled.canceled_at == T0

    def test_cancel_is_idempotent(self, create, db, deps, seed, notifier):
        booking = create()
        booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)
        events = list(notifier.events)

        again = booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)

        assert again.status == BookingStatus.CANCELED
        assert notifier.events == events

    def test_cancel_active(self, db, deps, seed, make_booking):
        booking = make_booking(START)

        canceled = booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)

        assert canceled.cancel_reason == "USER_CANCELED"

    def test_cancel_by_other_client_is_forbidden(self, create, db, deps, seed):
        booking = create()

        with pytest.raises(DomainException) as exc_info:
            booking_service.cancel_booking(db, booking.id, seed.other_client.id, **deps)

        assert _code(exc_info) == ErrorCode.FORBIDDEN

    def test_cannot_cancel_started_service(self, db, deps, seed, make_booking, clock):
        booking = make_booking(START)
        clock.advance(hours=2, minutes=10)

        with pytest.raises(DomainException) as exc_info:
            booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)

        assert _code(exc_info) == ErrorCode.INVALID_STATUS

    def test_cannot_cancel_elapsed_service(self, db, deps, seed, make_booking, clock):
        booking = make_booking(START)
        clock.advance(hours=4)

        with pytest.raises(DomainException) as exc_info:
            booking_service.cancel_booking(db, booking.id, seed.client.id, **deps)

        assert _code(exc_info) == ErrorCode.INVALID_STATUS
        db.refresh(booking)
        assert booking.status == BookingStatus.COMPLETED


class TestQueries:
    def test_list_excludes_canceled_unless_asked(self, create, db, deps, seed):
        kept = create()
        dropped = create(START + timedelta(hours=3))
        booking_service.cancel_booking(db, dropped.id, seed.client.id, **deps)

        visible = booking_service.list_bookings(db, seed.client.id, **deps)
        everything = booking_service.list_bookings(db, seed.client.id, include_canceled=True, **deps)

        assert [b.id for b in visible] == [kept.id]
        assert {b.id for b in everything} == {kept.id, dropped.id}

    def test_busy_slots(self, create, db, deps, seed):
        create()

        slots = booking_service.compute_busy_slots(
            db, seed.location.id, 1, T0, T0 + timedelta(days=1), **deps
        )

        assert [(s.start, s.end) for s in slots] == [(START, START + timedelta(hours=1))]

    def test_busy_slots_rejects_empty_window(self, db, deps, seed):
        with pytest.raises(DomainException) as exc_info:
            booking_service.compute_busy_slots(db, seed.location.id, 1, T0, T0, **deps)

        assert _code(exc_info) == ErrorCode.VALIDATION_ERROR


class TestStaffBooking:
    def _request(self, seed, **overrides):
        fields = {
            "car_id": seed.car.id,
            "service_id": seed.wash.id,
            "start_time": START,
            "bay_number": 1,
        }
        fields.update(overrides)
        return StaffBookingRequest(**fields)

    def test_staff_booking_is_active_without_hold(self, db, deps, seed):
        booking = booking_service.create_staff_booking(
            db, self._request(seed), staff_location_id=seed.location.id, **deps
        )

        assert booking.status == BookingStatus.ACTIVE
        assert booking.payment_due_at is None
        assert booking.client_id == seed.client.id

    def test_closed_bay_diverts_with_admin_reason(self, db, deps, seed, clock):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)

        result = booking_service.create_staff_booking(
            db, self._request(seed), staff_location_id=seed.location.id, **deps
        )

        assert isinstance(result, WaitlistDiversion)
        assert result.reason == "BAY_CLOSED_ADMIN:1:Maintenance"
        assert result.entry.desired_bay_id == 1

    def test_all_closed_diverts_with_admin_reason(self, db, deps, seed, clock):
        bay_service.close_bay(db, seed.location.id, 1, "Maintenance", clock=clock)
        bay_service.close_bay(db, seed.location.id, 2, "Maintenance", clock=clock)

        result = booking_service.create_staff_booking(
            db, self._request(seed, bay_number=2), staff_location_id=seed.location.id, **deps
        )

        assert result.reason == "ALL_BAYS_CLOSED_ADMIN"
        assert result.entry.desired_bay_id == 2
