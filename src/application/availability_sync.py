# src/application/availability_sync.py

import logging

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from src.application.broadcaster import (
    AvailabilityBroadcaster,
    EventAvailability,
    availability_broadcaster,
)
from src.domain.exceptions import NotFoundError
from src.domain.validation import EventType
from src.infrastructure.db.models import Event
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository


logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_availability_broadcasts"


@sa_event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for broadcaster, availability in pending.values():
        broadcaster.publish(availability)


@sa_event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


class AvailabilitySynchronizer:
    """
    Recomputes the cached availability counters of an event from its
    non-terminal bookings. Pure recomputation, so repeated calls converge
    and repair any drift.
    """

    def __init__(
        self,
        db: Session,
        broadcaster: AvailabilityBroadcaster = availability_broadcaster,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.event_repository = EventRepository(db)
        self.booking_repository = BookingRepository(db)

    def get_event_availability(self, event_id: int) -> EventAvailability:
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError(f"Event {event_id} not found")
        return self._compute(event)

    def sync_event_availability(self, event_id: int) -> EventAvailability | None:
        # Sessions run with autoflush off; pending booking changes must be visible.
        self.db.flush()
        event = self.event_repository.get_by_id(event_id)
        if not event:
            logger.error("Cannot sync availability, event %s not found", event_id)
            return None

        availability = self._compute(event)
        self.event_repository.set_availability(
            event,
            available_seats=availability.available_seats,
            available_tables=availability.available_tables,
        )
        self.db.flush()
        self._queue_broadcast(availability)

        logger.info(
            "Event %s availability synced: total_seats=%s booked_seats=%s available_seats=%s "
            "total_tables=%s booked_tables=%s available_tables=%s",
            event_id,
            availability.total_seats,
            availability.booked_seats,
            availability.available_seats,
            availability.total_tables,
            availability.booked_tables,
            availability.available_tables,
        )
        return availability

    def sync_all_events_availability(self) -> list[EventAvailability]:
        event_ids = self.event_repository.list_ids()
        report = []
        for event_id in event_ids:
            availability = self.sync_event_availability(event_id)
            if availability is not None:
                report.append(availability)
        logger.info("Availability sync completed for %s events", len(report))
        return report

    def _compute(self, event: Event) -> EventAvailability:
        booked_seats, booked_tables = self.booking_repository.occupancy(event.id)
        available_seats = event.total_seats - booked_seats

        if event.event_type == EventType.TICKET_ONLY:
            total_tables = 0
            booked_tables = 0
            available_tables = 0
            is_sold_out = available_seats <= 0
        else:
            total_tables = event.total_tables
            available_tables = total_tables - booked_tables
            is_sold_out = available_seats <= 0 or (total_tables > 0 and available_tables <= 0)

        return EventAvailability(
            event_id=event.id,
            title=event.title,
            event_type=EventType(event.event_type).value,
            total_seats=event.total_seats,
            booked_seats=booked_seats,
            available_seats=available_seats,
            total_tables=total_tables,
            booked_tables=booked_tables,
            available_tables=available_tables,
            is_sold_out=is_sold_out,
        )

    def _queue_broadcast(self, availability: EventAvailability) -> None:
        # Published from the after_commit hook; a rollback drops it.
        pending = self.db.info.setdefault(_PENDING_KEY, {})
        pending[availability.event_id] = (self.broadcaster, availability)
