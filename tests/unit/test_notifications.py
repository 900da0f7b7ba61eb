# tests/unit/test_notifications.py

from sqlalchemy import select

from src.application.booking_service import BookingService, PaymentReference
from src.application.broadcaster import AvailabilityBroadcaster
from src.application.notifications import NotificationDispatcher
from src.config import get_settings
from src.domain.state_machine import BookingStatus
from src.domain.webhook_events import CheckoutMetadata
from src.infrastructure.db.models import Booking, OutboxEvent
from src.infrastructure.db.session import SessionLocal


class RecordingNotifier:

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, event_type, payload):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append((event_type, payload))


def _confirmed_booking(db_session, make_event, make_table):
    make_event(event_id=35)
    make_table(table_id=286, label="12")
    service = BookingService(db_session, get_settings(), AvailabilityBroadcaster())
    result = service.confirm_checkout(
        CheckoutMetadata.from_provider(
            {"eventId": "35", "tableId": "286", "seats": "1,2", "customerEmail": "ada@example.com"}
        ),
        PaymentReference(session_id="cs_1", payment_id="pi_1", amount=5000),
    )
    db_session.commit()
    return result.booking


def test_dispatch_publishes_pending(db_session, make_event, make_table):
    _confirmed_booking(db_session, make_event, make_table)
    notifier = RecordingNotifier()

    assert NotificationDispatcher(notifier, SessionLocal).dispatch_pending() == 1

    event_type, payload = notifier.sent[0]
    assert event_type == "BOOKING_CONFIRMED"
    assert payload["table_id"] == 286
    assert payload["table_label"] == "12"
    assert NotificationDispatcher(notifier, SessionLocal).dispatch_pending() == 0


def test_failed_delivery_leaves_booking_alone(db_session, make_event, make_table):
    booking = _confirmed_booking(db_session, make_event, make_table)
    dispatcher = NotificationDispatcher(RecordingNotifier(fail=True), SessionLocal, max_attempts=2)

    assert dispatcher.dispatch_pending() == 0
    assert dispatcher.dispatch_pending() == 0
    assert dispatcher.dispatch_pending() == 0

    with SessionLocal() as db:
        item = db.execute(select(OutboxEvent)).scalars().one()
        assert item.status == "PENDING"
        assert item.attempts == 2
        assert "smtp down" in item.last_error
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED
