# src/application/hold_manager.py

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from src.application.booking_validator import BookingValidator
from src.config import Settings, get_settings
from src.domain import validation
from src.domain.exceptions import NotFoundError, ValidationError
from src.domain.results import HoldConflict
from src.domain.validation import EventType
from src.infrastructure.db.models import Event, SeatHold
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.hold_repository import (
    HOLD_ACTIVE,
    HOLD_COMPLETED,
    HOLD_RELEASED,
    HoldRepository,
)


logger = logging.getLogger(__name__)


class HoldManager:
    """
    Advisory seat holds placed while a customer pays.

    Expiry is evaluated lazily on every query (`now - hold_start_time >
    timeout`), so a hold stops blocking inventory on time even if the
    sweeper never runs.
    """

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.event_repository = EventRepository(db)
        self.booking_repository = BookingRepository(db)
        self.hold_repository = HoldRepository(db)
        self.validator = BookingValidator(db, self.settings)

    def place_hold(
        self,
        event_id: int,
        table_id: int | None,
        seat_numbers: list[int],
        customer_ref: str,
        party_size: int | None = None,
        access_code: str | None = None,
        now: datetime | None = None,
    ) -> SeatHold | HoldConflict:
        current = now or validation.utc_now()
        seats = sorted(set(seat_numbers))
        if len(seats) != len(seat_numbers):
            raise ValidationError("Seat numbers must be unique", field="seatNumbers")
        if not customer_ref or not customer_ref.strip():
            raise ValidationError("A customer reference is required", field="customerRef")

        event = self.event_repository.lock_event(event_id)
        if EventType(event.event_type) == EventType.TABLE and not seats:
            raise ValidationError("Select at least one seat", field="seatNumbers")

        size = party_size if party_size is not None else len(seats)
        self.validator.check_booking_request(
            event,
            table_id,
            size,
            access_code=access_code,
            now=current,
        )

        conflict = self._find_conflict(event, table_id, seats, size, current)
        if conflict:
            logger.info(
                "Hold rejected. event_id=%s table_id=%s seats=%s reason=%s",
                event_id,
                table_id,
                seats,
                conflict.reason,
            )
            return conflict

        hold = self.hold_repository.create(
            event_id=event_id,
            table_id=table_id,
            seat_numbers=seats,
            party_size=size,
            customer_ref=customer_ref.strip(),
            hold_start_time=current,
        )
        self.db.flush()
        logger.info(
            "Hold placed. hold_id=%s event_id=%s table_id=%s seats=%s",
            hold.id,
            event_id,
            table_id,
            seats,
        )
        return hold

    def release_hold(self, hold_id: str, now: datetime | None = None) -> bool:
        hold = self.hold_repository.get_by_id(hold_id)
        if not hold:
            raise NotFoundError(f"Hold {hold_id} not found")
        if hold.status != HOLD_ACTIVE:
            return False

        self.hold_repository.close(hold, HOLD_RELEASED, now or validation.utc_now())
        self.db.flush()
        logger.info("Hold released. hold_id=%s", hold_id)
        return True

    def complete_holds(
        self,
        event_id: int,
        table_id: int | None,
        hold_id: str | None = None,
        customer_refs: list[str] | None = None,
        now: datetime | None = None,
    ) -> int:
        """Close the hold(s) a confirmed booking came from."""
        current = now or validation.utc_now()
        holds: list[SeatHold] = []
        if hold_id:
            hold = self.hold_repository.get_by_id(hold_id)
            if hold and hold.status == HOLD_ACTIVE and hold.event_id == event_id:
                holds.append(hold)
        if not holds:
            holds = self.hold_repository.find_active_for_customer(
                event_id,
                table_id,
                [ref for ref in (customer_refs or []) if ref],
            )

        for hold in holds:
            self.hold_repository.close(hold, HOLD_COMPLETED, current)
        return len(holds)

    def is_held_or_booked(
        self,
        event_id: int,
        table_id: int | None,
        seat_numbers: list[int],
        as_of: datetime | None = None,
        exclude_hold_id: str | None = None,
    ) -> bool:
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError(f"Event {event_id} not found")
        current = as_of or validation.utc_now()
        party_size = max(len(seat_numbers), 1)
        conflict = self._find_conflict(
            event,
            table_id,
            sorted(set(seat_numbers)),
            party_size,
            current,
            exclude_hold_id=exclude_hold_id,
        )
        return conflict is not None

    def hold_expires_at(self, hold: SeatHold) -> datetime:
        return validation.hold_expires_at(hold.hold_start_time, self.settings.hold_timeout)

    def is_expired(self, hold: SeatHold, now: datetime | None = None) -> bool:
        return validation.is_booking_hold_expired(
            hold.hold_start_time,
            now,
            self.settings.hold_timeout,
        )

    def sweep_expired_holds(self, now: datetime | None = None) -> int:
        current = now or validation.utc_now()
        expired = self.hold_repository.expire_started_before(
            cutoff=current - self.settings.hold_timeout,
            closed_at=current,
        )
        if expired:
            logger.info("Expired %s stale seat holds", expired)
        return expired

    def _find_conflict(
        self,
        event: Event,
        table_id: int | None,
        seats: list[int],
        party_size: int,
        now: datetime,
        exclude_hold_id: str | None = None,
    ) -> HoldConflict | None:
        if table_id is None:
            if self.validator.has_ticket_capacity(
                event,
                party_size,
                now=now,
                exclude_hold_id=exclude_hold_id,
            ):
                return None
            return HoldConflict(
                event_id=event.id,
                table_id=None,
                reason="Not enough tickets available",
            )

        booking = self.booking_repository.find_active_for_table(event.id, table_id)
        if booking:
            return HoldConflict(
                event_id=event.id,
                table_id=table_id,
                reason=f"Table {table_id} is already booked",
                conflicting_seats=list(seats),
            )

        active_holds = self.hold_repository.list_active(
            event_id=event.id,
            started_after=now - self.settings.hold_timeout,
            table_id=table_id,
        )
        taken: set[int] = set()
        for hold in active_holds:
            if hold.id == exclude_hold_id:
                continue
            taken |= validation.seats_overlap(seats, hold.seat_numbers or [])
        if taken:
            return HoldConflict(
                event_id=event.id,
                table_id=table_id,
                reason="Seats are currently on hold",
                conflicting_seats=sorted(taken),
            )
        return None
