# src/infrastructure/repositories/webhook_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import ProcessedWebhookEvent


class WebhookEventRepository:

    def __init__(self, db: Session):
        self.db = db

    def is_processed(self, stripe_event_id: str) -> bool:
        stmt = select(ProcessedWebhookEvent.id).where(
            ProcessedWebhookEvent.stripe_event_id == stripe_event_id
        )
        return self.db.execute(stmt).first() is not None

    def mark_processed(
        self,
        stripe_event_id: str,
        event_type: str,
        outcome: str,
        booking_id: str | None = None,
    ) -> ProcessedWebhookEvent:
        record = ProcessedWebhookEvent(
            stripe_event_id=stripe_event_id,
            event_type=event_type,
            outcome=outcome,
            booking_id=booking_id,
        )
        self.db.add(record)
        return record
