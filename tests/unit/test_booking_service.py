# tests/unit/test_booking_service.py

import json

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.application.booking_service import BookingService, PaymentReference
from src.application.broadcaster import AvailabilityBroadcaster
from src.application.hold_manager import HoldManager
from src.config import get_settings
from src.domain.exceptions import ConflictError, InvalidStateTransitionError, ValidationError
from src.domain.results import BookingConfirmed, BookingConflict
from src.domain.state_machine import BookingStatus
from src.domain.validation import EventType
from src.domain.webhook_events import CheckoutMetadata
from src.infrastructure.db.models import AdminLog, Booking, Event, OutboxEvent, SeatHold
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.repositories.audit_repository import AdminLogRepository


@pytest.fixture
def service(db_session):
    return BookingService(db_session, get_settings(), AvailabilityBroadcaster())


@pytest.fixture
def venue(make_event, make_table):
    make_event(event_id=35, total_seats=40, total_tables=10)
    make_table(table_id=286, label="12")
    make_table(table_id=287, label="14")


def _metadata(**values) -> CheckoutMetadata:
    base = {"eventId": "35", "tableId": "286", "seats": "1,2", "customerEmail": "ada@example.com"}
    base.update(values)
    return CheckoutMetadata.from_provider(base)


def _confirm(service, session_id, **metadata):
    return service.confirm_checkout(
        _metadata(**metadata),
        PaymentReference(session_id=session_id, payment_id=f"pi_{session_id}", amount=5000),
    )


def test_confirm_creates_booking_and_syncs(service, venue, db_session):
    result = _confirm(service, "cs_1")
    db_session.commit()

    assert isinstance(result, BookingConfirmed)
    assert result.created
    booking = result.booking
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.party_size == 2
    assert booking.amount == 5000
    assert db_session.get(Event, 35).available_seats == 38

    outbox = db_session.execute(select(OutboxEvent)).scalars().one()
    assert outbox.event_type == "BOOKING_CONFIRMED"
    payload = json.loads(outbox.payload)
    assert payload["table_id"] == 286
    assert payload["table_label"] == "12"


def test_confirm_is_idempotent_by_payment(service, venue, db_session):
    first = _confirm(service, "cs_1")
    db_session.commit()
    second = _confirm(service, "cs_1")

    assert second.created is False
    assert second.booking.id == first.booking.id
    assert len(db_session.execute(select(Booking)).scalars().all()) == 1


def test_second_payment_for_same_table_is_a_conflict(service, venue, db_session):
    first = _confirm(service, "cs_1")
    db_session.commit()

    result = _confirm(service, "cs_2", customerEmail="grace@example.com")
    db_session.commit()

    assert isinstance(result, BookingConflict)
    assert result.existing_booking_id == first.booking.id
    assert result.stripe_session_id == "cs_2"
    bookings = db_session.execute(select(Booking)).scalars().all()
    assert len(bookings) == 1
    log = db_session.execute(select(AdminLog).where(AdminLog.action == "booking_conflict")).scalars().one()
    assert log.details["stripeSessionId"] == "cs_2"


def test_same_payment_confirmed_while_waiting_for_lock(service, venue, db_session):
    payment = PaymentReference(session_id="cs_1", payment_id="pi_1", amount=5000)
    other_db = SessionLocal()
    lock_event = service.event_repository.lock_event

    def lock_after_other_delivery(event_id):
        other = BookingService(other_db, get_settings(), AvailabilityBroadcaster())
        assert other.confirm_checkout(_metadata(), payment).created
        other_db.commit()
        return lock_event(event_id)

    service.event_repository.lock_event = lock_after_other_delivery
    result = service.confirm_checkout(_metadata(), payment, source="recovery")
    db_session.commit()
    other_db.close()

    assert isinstance(result, BookingConfirmed)
    assert result.created is False
    assert len(db_session.execute(select(Booking)).scalars().all()) == 1
    conflicts = db_session.execute(select(AdminLog).where(AdminLog.action == "booking_conflict"))
    assert conflicts.scalars().all() == []


def test_lost_insert_race_keeps_earlier_work(service, venue, db_session, monkeypatch):
    first = _confirm(service, "cs_1").booking
    db_session.commit()
    AdminLogRepository(db_session).record(action="seating_note", entity_type="event", entity_id=35)
    # Let the insert reach the unique index, as when another transaction commits first.
    monkeypatch.setattr(service, "_check_inventory", lambda *args: None)

    result = _confirm(service, "cs_2", customerEmail="grace@example.com")
    db_session.commit()

    assert isinstance(result, BookingConflict)
    assert result.existing_booking_id == first.id
    assert result.reason == "Table 286 was booked concurrently"
    assert len(db_session.execute(select(Booking)).scalars().all()) == 1
    note = db_session.execute(select(AdminLog).where(AdminLog.action == "seating_note"))
    assert len(note.scalars().all()) == 1


def test_storage_rejects_second_active_booking(db_session, venue):
    for email in ("a@example.com", "b@example.com"):
        db_session.add(
            Booking(
                event_id=35,
                table_id=286,
                seat_numbers=[1],
                party_size=1,
                customer_email=email,
                status=BookingStatus.CONFIRMED,
            )
        )
    with pytest.raises(IntegrityError):
        db_session.flush()


def test_confirm_completes_the_hold(service, venue, db_session):
    hold = HoldManager(db_session, get_settings()).place_hold(35, 286, [1, 2], "ada@example.com")
    db_session.commit()

    _confirm(service, "cs_1", holdId=hold.id)
    db_session.commit()

    assert db_session.get(SeatHold, hold.id).status == "completed"


def test_confirm_rejects_bad_wine_selection(service, venue):
    wine = json.dumps(
        [
            {"type": "wine_glass", "name": "Rioja", "quantity": 1},
            {"type": "beer", "name": "Lager", "quantity": 1},
        ]
    )
    with pytest.raises(ValidationError):
        _confirm(service, "cs_1", wineSelections=wine)


def test_ticket_confirmation_respects_capacity(service, make_event, db_session):
    make_event(event_id=7, event_type=EventType.TICKET_ONLY, total_seats=5)

    first = service.confirm_checkout(
        CheckoutMetadata.from_provider({"eventId": "7", "quantity": "4", "customerEmail": "a@example.com"}),
        PaymentReference(session_id="cs_a"),
    )
    second = service.confirm_checkout(
        CheckoutMetadata.from_provider({"eventId": "7", "quantity": "2", "customerEmail": "b@example.com"}),
        PaymentReference(session_id="cs_b"),
    )

    assert isinstance(first, BookingConfirmed)
    assert isinstance(second, BookingConflict)


def test_direct_booking_enforces_ticket_cutoff(service, make_event):
    make_event(event_id=8, event_type=EventType.TICKET_ONLY, days_ahead=1)

    with pytest.raises(ValidationError):
        service.create_direct_booking(8, None, [], "ada@example.com", party_size=2)


# ---------------------
# RELEASE
# ---------------------

def test_refund_releases_seats_once(service, venue, db_session):
    booking = _confirm(service, "cs_1", seats="1,2,3,4").booking
    db_session.commit()
    assert db_session.get(Event, 35).available_seats == 36

    released, changed = service.release_by_payment_reference(
        ["pi_cs_1"], BookingStatus.REFUNDED, refund_amount=5000
    )
    db_session.commit()

    assert changed
    assert released.status == BookingStatus.REFUNDED
    assert released.refund_amount == 5000
    assert db_session.get(Event, 35).available_seats == 40

    _, changed_again = service.release_by_payment_reference(
        ["pi_cs_1"], BookingStatus.REFUNDED, refund_amount=5000
    )
    assert changed_again is False
    assert booking.id == released.id


def test_unknown_payment_reference(service, venue):
    assert service.release_by_payment_reference(["pi_missing"], BookingStatus.REFUNDED) == (None, False)


def test_admin_cancel_is_logged(service, venue, db_session):
    booking = _confirm(service, "cs_1").booking
    db_session.commit()

    canceled = service.cancel_booking(booking.id, actor="ops@example.com", reason="no show")
    db_session.commit()

    assert canceled.status == BookingStatus.CANCELED
    log = db_session.execute(select(AdminLog).where(AdminLog.action == "booking_canceled")).scalars().one()
    assert log.actor == "ops@example.com"


# ---------------------
# MODIFICATION
# ---------------------

def test_reassign_then_finalize(service, venue, db_session):
    booking = _confirm(service, "cs_1").booking
    db_session.commit()

    moved = service.reassign_table(booking.id, 287, seat_numbers=[3, 4])
    db_session.commit()
    assert moved.status == BookingStatus.MODIFIED
    assert moved.table_id == 287

    final = service.finalize_modification(booking.id)
    db_session.commit()
    assert final.status == BookingStatus.CONFIRMED


def test_reassign_to_occupied_table_is_refused(service, venue, db_session):
    first = _confirm(service, "cs_1").booking
    _confirm(service, "cs_2", tableId="287", customerEmail="grace@example.com")
    db_session.commit()

    with pytest.raises(ConflictError):
        service.reassign_table(first.id, 287)


def test_reassign_to_own_table_is_allowed(service, venue, db_session):
    booking = _confirm(service, "cs_1").booking
    db_session.commit()

    assert service.reassign_table(booking.id, 286).status == BookingStatus.MODIFIED


def test_terminal_booking_cannot_be_modified(service, venue, db_session):
    booking = _confirm(service, "cs_1").booking
    service.refund_booking(booking.id)
    db_session.commit()

    with pytest.raises(InvalidStateTransitionError):
        service.reassign_table(booking.id, 287)
    with pytest.raises(InvalidStateTransitionError):
        service.finalize_modification(booking.id)
