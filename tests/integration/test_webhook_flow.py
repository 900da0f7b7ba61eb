import dataclasses
import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from src.api.routes.dependencies import get_app_settings
from src.application.hold_manager import HoldManager
from src.config import get_settings
from src.domain.state_machine import BookingStatus
from src.domain.validation import utc_now
from src.infrastructure.db.models import AdminLog, Booking, OutboxEvent, ProcessedWebhookEvent
from src.infrastructure.db.session import SessionLocal
from tests.webhook_payloads import charge_refunded_event, checkout_completed_event, sign_payload


@pytest.fixture
def venue(make_event, make_table):
    make_event(event_id=35, total_seats=40, total_tables=10)
    make_table(table_id=286, label="12")


def _availability(client, event_id=35):
    response = client.get(f"/api/events/{event_id}/availability")
    assert response.status_code == 200
    return response.json()


def _count(model, *criteria):
    with SessionLocal() as db:
        return db.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


def _metadata(**values):
    base = {
        "eventId": "35",
        "tableId": "286",
        "seats": "1,2",
        "customerEmail": "ada@example.com",
        "eventType": "table",
    }
    base.update(values)
    return base


def test_happy_path(client, venue, post_webhook):
    hold = client.post(
        "/api/seat-holds",
        json={"eventId": 35, "tableId": 286, "seatNumbers": [1, 2], "customerRef": "ada@example.com"},
    )
    assert hold.status_code == 201
    hold_id = hold.json()["holdId"]
    assert "expiresAt" in hold.json()

    event = checkout_completed_event("evt_happy", "cs_happy", _metadata(holdId=hold_id))
    response = post_webhook(event)

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "eventId": "evt_happy",
        "type": "checkout.session.completed",
    }

    with SessionLocal() as db:
        booking = db.execute(select(Booking)).scalars().one()
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.table_id == 286
        assert booking.seat_numbers == [1, 2]
        assert booking.stripe_session_id == "cs_happy"
        processed = db.execute(select(ProcessedWebhookEvent)).scalars().one()
        assert processed.outcome == "processed"
        assert processed.booking_id == booking.id

    availability = _availability(client)
    assert availability["availableSeats"] == 38
    assert availability["bookedTables"] == 1

    # The background dispatcher delivered the confirmation.
    assert _count(OutboxEvent, OutboxEvent.status == "PUBLISHED") == 1


def test_duplicate_delivery_is_a_noop(client, venue, post_webhook):
    event = checkout_completed_event("evt_dup", "cs_dup", _metadata())

    first = post_webhook(event)
    second = post_webhook(event)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json() == {"received": True, "duplicate": True}
    assert _count(Booking) == 1
    assert _availability(client)["availableSeats"] == 38


def test_session_and_intent_events_for_one_payment(client, venue, post_webhook):
    post_webhook(checkout_completed_event("evt_a", "cs_one", _metadata(), payment_intent="pi_one"))
    intent_event = {
        "id": "evt_b",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_one", "amount": 5000, "metadata": _metadata()}},
    }

    response = post_webhook(intent_event)

    assert response.status_code == 200
    assert _count(Booking) == 1
    assert _count(ProcessedWebhookEvent, ProcessedWebhookEvent.outcome == "duplicate-payment") == 1


def test_race_loss_is_reported_not_booked(client, venue, post_webhook, db_session):
    manager = HoldManager(db_session, get_settings())
    now = utc_now()
    manager.place_hold(35, 286, [1, 2], "ada@example.com", now=now - timedelta(minutes=25))
    manager.place_hold(35, 286, [1, 2], "grace@example.com", now=now)
    db_session.commit()

    first = post_webhook(checkout_completed_event("evt_r1", "cs_r1", _metadata()))
    second = post_webhook(
        checkout_completed_event(
            "evt_r2",
            "cs_r2",
            _metadata(customerEmail="grace@example.com"),
            email="grace@example.com",
        )
    )

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["eventId"] == "evt_r2"
    assert _count(Booking, Booking.table_id == 286) == 1
    assert _count(ProcessedWebhookEvent, ProcessedWebhookEvent.outcome == "conflict") == 1

    with SessionLocal() as db:
        log = db.execute(select(AdminLog).where(AdminLog.action == "booking_conflict")).scalars().one()
        assert log.details["stripeSessionId"] == "cs_r2"
    assert _availability(client)["availableSeats"] == 38


def test_refund_releases_party(client, venue, post_webhook):
    post_webhook(
        checkout_completed_event(
            "evt_buy",
            "cs_buy",
            _metadata(seats="1,2,3,4"),
            payment_intent="pi_buy",
        )
    )
    assert _availability(client)["availableSeats"] == 36

    refund = charge_refunded_event("evt_refund", "pi_buy", 5000)
    response = post_webhook(refund)

    assert response.status_code == 200
    with SessionLocal() as db:
        booking = db.execute(select(Booking)).scalars().one()
        assert booking.status == BookingStatus.REFUNDED
        assert booking.refund_amount == 5000
    assert _availability(client)["availableSeats"] == 40

    # Same event again, then a distinct event for the same refund.
    assert post_webhook(refund).json() == {"received": True, "duplicate": True}
    again = post_webhook(charge_refunded_event("evt_refund_2", "pi_buy", 5000))
    assert again.status_code == 200
    assert _availability(client)["availableSeats"] == 40
    assert _count(OutboxEvent, OutboxEvent.event_type == "BOOKING_REFUNDED") == 1


def test_dispute_cancels_booking(client, venue, post_webhook):
    post_webhook(checkout_completed_event("evt_buy", "cs_buy", _metadata(), payment_intent="pi_buy"))
    dispute = {
        "id": "evt_dispute",
        "type": "charge.dispute.created",
        "data": {"object": {"id": "dp_1", "charge": "ch_1", "payment_intent": "pi_buy", "amount": 5000}},
    }

    assert post_webhook(dispute).status_code == 200

    with SessionLocal() as db:
        booking = db.execute(select(Booking)).scalars().one()
        assert booking.status == BookingStatus.CANCELED
        assert booking.refund_amount == 5000


def test_unpaid_session_is_acknowledged_and_ignored(client, venue, post_webhook):
    event = checkout_completed_event("evt_unpaid", "cs_unpaid", _metadata(), payment_status="unpaid")

    assert post_webhook(event).status_code == 200
    assert _count(Booking) == 0
    assert _count(ProcessedWebhookEvent, ProcessedWebhookEvent.outcome == "ignored") == 1


def test_invalid_metadata_is_recorded_as_rejected(client, venue, post_webhook):
    wine = json.dumps([{"type": "beer", "name": "Lager", "quantity": 1}])
    event = checkout_completed_event("evt_bad", "cs_bad", _metadata(wineSelections=wine))

    response = post_webhook(event)

    assert response.status_code == 200
    assert _count(Booking) == 0
    assert _count(ProcessedWebhookEvent, ProcessedWebhookEvent.outcome == "rejected") == 1
    assert _count(AdminLog, AdminLog.action == "webhook_rejected") == 1


def test_unknown_event_type_is_acknowledged(client, post_webhook):
    response = post_webhook({"id": "evt_other", "type": "customer.created", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.json()["type"] == "customer.created"


# ---------------------
# AUTHENTICITY
# ---------------------

def test_bad_signature_is_rejected_without_side_effects(client, venue, post_webhook):
    event = checkout_completed_event("evt_forged", "cs_forged", _metadata())

    response = post_webhook(event, secret="whsec_wrong")

    assert response.status_code == 400
    assert _count(Booking) == 0
    assert _count(ProcessedWebhookEvent) == 0


def test_missing_signature_is_rejected(client, venue):
    response = client.post("/api/stripe-webhook", content=b"{}")
    assert response.status_code == 400


def test_stale_signature_is_rejected(client, venue, post_webhook):
    event = checkout_completed_event("evt_old", "cs_old", _metadata())
    body = json.dumps(event)
    stale = sign_payload(body, timestamp=int(utc_now().timestamp()) - 3600)

    response = client.post("/api/stripe-webhook", content=body, headers={"stripe-signature": stale})

    assert response.status_code == 400


def test_missing_secret_is_a_server_error(client, venue, post_webhook):
    app_settings = dataclasses.replace(get_settings(), stripe_webhook_secret=None)
    client.app.dependency_overrides[get_app_settings] = lambda: app_settings

    response = post_webhook(checkout_completed_event("evt_x", "cs_x", _metadata()))

    assert response.status_code == 500
    assert _count(Booking) == 0
