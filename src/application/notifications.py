# src/application/notifications.py
"""
Outbox consumer. Booking state is committed before anything here runs,
so a failed notification can never undo a booking.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.infrastructure.repositories.audit_repository import OutboxRepository


logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class Notifier(Protocol):
    def send(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes the notice to the log instead of emailing it."""

    def send(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification %s for booking %s to %s (table %s / %s)",
            event_type,
            payload.get("booking_id"),
            payload.get("customer_email"),
            payload.get("table_label"),
            payload.get("table_id"),
        )


class NotificationDispatcher:

    def __init__(
        self,
        notifier: Notifier,
        session_factory: Callable[[], Session] = SessionLocal,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_size: int = 50,
    ):
        self.notifier = notifier
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    def dispatch_pending(self) -> int:
        """Deliver pending outbox events; returns how many were published."""
        published = 0
        db = self.session_factory()
        try:
            pending = OutboxRepository(db).list_pending(self.max_attempts, self.batch_size)
            for item in pending:
                item.attempts += 1
                try:
                    self.notifier.send(item.event_type, json.loads(item.payload))
                except Exception as exc:
                    item.last_error = str(exc)[:1000]
                    logger.exception(
                        "Notification failed. outbox_id=%s event_type=%s attempts=%s",
                        item.id,
                        item.event_type,
                        item.attempts,
                    )
                else:
                    item.status = "PUBLISHED"
                    item.published_at = datetime.now(timezone.utc)
                    item.last_error = None
                    published += 1
                db.commit()
        except Exception:
            db.rollback()
            logger.exception("Notification dispatch aborted")
        finally:
            db.close()
        return published
