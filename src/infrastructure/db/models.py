# src/infrastructure/db/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Any
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.state_machine import BookingStatus
from src.domain.validation import EventType


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Event(Base):
    """
    Schedulable occasion. available_seats / available_tables are a cache
    of the bookings table and are only written by the availability sync.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[EventType] = mapped_column(
        Enum(EventType, name="event_type", values_callable=_enum_values),
        nullable=False,
        default=EventType.TABLE,
    )
    venue_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    total_tables: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_tables: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ticket_cutoff_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("total_seats >= 0", name="ck_event_total_seats_nonnegative"),
        CheckConstraint("total_tables >= 0", name="ck_event_total_tables_nonnegative"),
    )


class VenueTable(Base):
    """
    Physical table on a venue floor. `id` is internal; `table_label` is
    what customers see on tickets and emails.
    """

    __tablename__ = "venue_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    venue_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    table_label: Mapped[str] = mapped_column(String(32), nullable=False)
    floor: Mapped[str] = mapped_column(String(64), nullable=False, default="Main Floor")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    __table_args__ = (
        UniqueConstraint("venue_id", "floor", "table_label", name="uq_venue_table_label"),
        CheckConstraint("capacity > 0", name="ck_table_capacity_positive"),
    )


class SeatHold(Base):
    __tablename__ = "seat_holds"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False)
    table_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("venue_tables.id"),
        nullable=True,
    )
    seat_numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    hold_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_seat_holds_event_status", "event_id", "status"),
        CheckConstraint("party_size > 0", name="ck_hold_party_size_positive"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False)
    table_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("venue_tables.id"),
        nullable=True,
    )
    seat_numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.CONFIRMED,
    )
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="webhook")
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    food_selections: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    wine_selections: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    guest_names: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    selected_venue: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_modified: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("stripe_session_id", name="uq_booking_stripe_session_id"),
        CheckConstraint("party_size > 0", name="ck_party_size_positive"),
        # At most one booking per (event, table) may still hold the table.
        Index(
            "uq_booking_active_table",
            "event_id",
            "table_id",
            unique=True,
            postgresql_where=text("status IN ('confirmed', 'modified')"),
            sqlite_where=text("status IN ('confirmed', 'modified')"),
        ),
    )


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False, default="processed")
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("stripe_event_id", name="uq_processed_webhook_event_id"),
    )


class AdminLog(Base):
    """Append-only audit trail. Rows are never updated or deleted."""

    __tablename__ = "admin_logs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
