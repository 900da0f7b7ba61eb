import json
import os
from datetime import timedelta

from tests.webhook_payloads import WEBHOOK_SECRET, sign_payload

# Configure before anything under src/ is imported: the engine is built at import time.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["HOLD_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["HOLD_TIMEOUT_MINUTES"] = "20"
os.environ["TICKET_CUTOFF_DAYS"] = "3"

import pytest
from fastapi.testclient import TestClient

from src.domain.validation import EventType, utc_now
from src.infrastructure.db.models import Base, Event, VenueTable
from src.infrastructure.db.session import SessionLocal, engine
from src.main import app


@pytest.fixture(autouse=True)
def _database():
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(_database):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(_database):
    return TestClient(app)


@pytest.fixture
def make_event(db_session):
    def _make(
        event_id: int | None = None,
        event_type: EventType = EventType.TABLE,
        total_seats: int = 40,
        total_tables: int = 10,
        days_ahead: float = 10,
        **overrides,
    ) -> Event:
        event = Event(
            id=event_id,
            title=overrides.pop("title", f"Event {event_id or ''}".strip()),
            event_type=event_type,
            venue_id=overrides.pop("venue_id", 1),
            date=overrides.pop("date", utc_now() + timedelta(days=days_ahead)),
            total_seats=total_seats,
            available_seats=total_seats,
            total_tables=total_tables if event_type == EventType.TABLE else 0,
            available_tables=total_tables if event_type == EventType.TABLE else 0,
            **overrides,
        )
        db_session.add(event)
        db_session.commit()
        return event

    return _make


@pytest.fixture
def make_table(db_session):
    def _make(table_id: int | None = None, label: str | None = None, venue_id: int = 1, capacity: int = 8):
        table = VenueTable(
            id=table_id,
            venue_id=venue_id,
            table_label=label or f"T{table_id}",
            capacity=capacity,
        )
        db_session.add(table)
        db_session.commit()
        return table

    return _make


@pytest.fixture
def post_webhook(client):
    def _post(event: dict, secret: str = WEBHOOK_SECRET, signature: str | None = None):
        body = json.dumps(event)
        header = signature if signature is not None else sign_payload(body, secret)
        return client.post(
            "/api/stripe-webhook",
            content=body,
            headers={"stripe-signature": header, "content-type": "application/json"},
        )

    return _post
