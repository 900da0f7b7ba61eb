# src/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, or_, select

from src.infrastructure.db.models import Booking
from src.domain.state_machine import BookingStatus, NON_TERMINAL_STATUSES


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, booking_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_reference(
        self,
        stripe_session_id: str | None,
        stripe_payment_id: str | None,
    ) -> Booking | None:
        conditions = []
        if stripe_session_id:
            conditions.append(Booking.stripe_session_id == stripe_session_id)
        if stripe_payment_id:
            conditions.append(Booking.stripe_payment_id == stripe_payment_id)
        if not conditions:
            return None

        stmt = select(Booking).where(or_(*conditions)).order_by(Booking.created_at).limit(1)
        return self.db.execute(stmt).scalars().first()

    def find_for_payment_references(
        self,
        references: list[str],
        lock: bool = False,
    ) -> Booking | None:
        if not references:
            return None
        stmt = (
            select(Booking)
            .where(Booking.stripe_payment_id.in_(references))
            .order_by(Booking.created_at)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def find_active_for_table(
        self,
        event_id: int,
        table_id: int,
        exclude_booking_id: str | None = None,
    ) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.event_id == event_id)
            .where(Booking.table_id == table_id)
            .where(Booking.status.in_(NON_TERMINAL_STATUSES))
        )
        if exclude_booking_id:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return self.db.execute(stmt.limit(1)).scalars().first()

    def occupancy(self, event_id: int) -> tuple[int, int]:
        """(seats, distinct tables) taken by non-terminal bookings."""
        stmt = (
            select(
                func.coalesce(func.sum(Booking.party_size), 0),
                func.count(func.distinct(Booking.table_id)),
            )
            .where(Booking.event_id == event_id)
            .where(Booking.status.in_(NON_TERMINAL_STATUSES))
        )
        booked_seats, booked_tables = self.db.execute(stmt).one()
        return int(booked_seats or 0), int(booked_tables or 0)

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status
