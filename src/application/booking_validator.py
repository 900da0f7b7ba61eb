# src/application/booking_validator.py

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.domain import validation
from src.domain.exceptions import ValidationError
from src.domain.validation import EventType
from src.infrastructure.db.models import Event, VenueTable
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.hold_repository import HoldRepository


class BookingValidator:
    """
    Rule checks that need the ledger. Read-only: nothing here writes.
    The pure rules live in src.domain.validation.
    """

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.booking_repository = BookingRepository(db)
        self.event_repository = EventRepository(db)
        self.hold_repository = HoldRepository(db)

    def validate_table_availability(
        self,
        table_id: int,
        event_id: int,
        exclude_booking_id: str | None = None,
    ) -> bool:
        existing = self.booking_repository.find_active_for_table(
            event_id=event_id,
            table_id=table_id,
            exclude_booking_id=exclude_booking_id,
        )
        return existing is None

    def validate_table_reassignment(
        self,
        new_table_id: int,
        event_id: int,
        exclude_booking_id: str | None = None,
    ) -> bool:
        return self.validate_table_availability(
            new_table_id,
            event_id,
            exclude_booking_id=exclude_booking_id,
        )

    def has_ticket_capacity(
        self,
        event: Event,
        party_size: int,
        now: datetime | None = None,
        include_holds: bool = True,
        exclude_hold_id: str | None = None,
    ) -> bool:
        booked_seats, _ = self.booking_repository.occupancy(event.id)
        held_seats = 0
        if include_holds:
            current = now or validation.utc_now()
            holds = self.hold_repository.list_active(
                event_id=event.id,
                started_after=current - self.settings.hold_timeout,
                table_id=None,
            )
            held_seats = sum(hold.party_size for hold in holds if hold.id != exclude_hold_id)
        return booked_seats + held_seats + party_size <= event.total_seats

    def check_booking_request(
        self,
        event: Event,
        table_id: int | None,
        party_size: int,
        wine_selections: Any = None,
        access_code: str | None = None,
        now: datetime | None = None,
        enforce_cutoff: bool = True,
        enforce_access: bool = True,
    ) -> VenueTable | None:
        """
        Raises ValidationError on the first failed rule. Returns the table
        row for table-based events.
        """
        if not event.is_active:
            raise ValidationError(f"Event {event.id} is not open for booking", field="eventId")

        if enforce_access:
            has_access = bool(event.access_code) and access_code == event.access_code
            if not validation.validate_event_access(event.id, event.is_private, has_access):
                raise ValidationError("This is a private event", field="accessCode")

        event_type = EventType(event.event_type)
        table = None
        if event_type == EventType.TICKET_ONLY:
            if table_id is not None:
                raise ValidationError("Ticket-only events do not take a table", field="tableId")
        else:
            if table_id is None:
                raise ValidationError("A table is required for this event", field="tableId")
            table = self.event_repository.get_table(table_id)
            if not table or table.venue_id != event.venue_id:
                raise ValidationError(
                    f"Table {table_id} does not belong to event {event.id}",
                    field="tableId",
                )

        if not validation.validate_party_size(event_type, party_size):
            low, high = validation.party_size_bounds(event_type)
            raise ValidationError(
                f"Party size must be between {low} and {high} for {event_type.value} events",
                field="partySize",
            )

        if wine_selections is not None and not validation.validate_wine_selections(wine_selections):
            raise ValidationError("Invalid wine selections", field="wineSelections")

        if enforce_cutoff and event_type == EventType.TICKET_ONLY:
            cutoff_days = event.ticket_cutoff_days
            if cutoff_days is None:
                cutoff_days = self.settings.ticket_cutoff_days
            if not validation.is_within_ticket_cutoff(event.date, cutoff_days, now):
                raise ValidationError(
                    f"Ticket sales close {cutoff_days} days before the event",
                    field="eventId",
                )

        return table
