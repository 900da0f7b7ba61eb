# src/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Event, VenueTable
from src.domain.exceptions import NotFoundError


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_event(self, event_id: int) -> Event:
        """
        SELECT ... FOR UPDATE
        Serializes confirmations and holds for one event.
        """

        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
        )

        event = self.db.execute(stmt).scalar_one_or_none()

        if not event:
            raise NotFoundError(f"Event {event_id} not found")

        return event

    def get_by_id(self, event_id: int) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_ids(self) -> list[int]:
        stmt = select(Event.id).order_by(Event.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_table(self, table_id: int) -> VenueTable | None:
        stmt = select(VenueTable).where(VenueTable.id == table_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def set_availability(
        self,
        event: Event,
        available_seats: int,
        available_tables: int,
    ) -> None:
        event.available_seats = available_seats
        event.available_tables = available_tables
