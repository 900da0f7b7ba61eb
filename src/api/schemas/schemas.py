from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class BookingCreateRequest(CamelModel):
    event_id: int
    table_id: int | None = None
    seat_numbers: list[int] = Field(default_factory=list)
    customer_email: str = Field(min_length=3)
    party_size: int | None = Field(default=None, gt=0)
    food_selections: list[Any] | None = None
    # Shape is checked by the booking rules so a bad entry is a 400, not a schema error.
    wine_selections: Any = None
    guest_names: list[Any] | dict[str, Any] | None = None
    selected_venue: str | None = None
    hold_id: str | None = None
    access_code: str | None = None


class BookingResponse(CamelModel):
    id: str
    event_id: int
    table_id: int | None
    seat_numbers: list[int]
    party_size: int
    customer_email: str
    status: str
    source: str
    stripe_session_id: str | None
    stripe_payment_id: str | None
    amount: int
    refund_amount: int | None
    food_selections: list[Any]
    wine_selections: list[Any]
    guest_names: Any
    selected_venue: str | None
    notes: str | None
    created_at: datetime | None
    last_modified: datetime | None


class ConflictResponse(CamelModel):
    event_id: int
    table_id: int | None
    reason: str
    conflicting_seats: list[int] = Field(default_factory=list)


class SeatHoldRequest(CamelModel):
    event_id: int
    table_id: int | None = None
    seat_numbers: list[int] = Field(default_factory=list)
    customer_ref: str = Field(min_length=1)
    party_size: int | None = Field(default=None, gt=0)
    access_code: str | None = None


class SeatHoldResponse(CamelModel):
    hold_id: str
    event_id: int
    table_id: int | None
    seat_numbers: list[int]
    party_size: int
    hold_start_time: datetime
    expires_at: datetime


class HoldReleaseResponse(CamelModel):
    hold_id: str
    released: bool


class HoldCleanupResponse(CamelModel):
    expired: int


class AvailabilityResponse(CamelModel):
    event_id: int
    title: str
    event_type: str
    total_seats: int
    booked_seats: int
    available_seats: int
    total_tables: int
    booked_tables: int
    available_tables: int
    is_sold_out: bool


class SyncAllResponse(CamelModel):
    synced: int
    events: list[AvailabilityResponse]


class RecoverBookingRequest(CamelModel):
    session_id: str = Field(min_length=1)


class RecoverBookingResponse(CamelModel):
    created: bool
    booking: BookingResponse


class RefundRequest(CamelModel):
    refund_amount: int | None = Field(default=None, ge=0)
    reason: str | None = None
    actor: str | None = None


class CancelRequest(CamelModel):
    reason: str | None = None
    actor: str | None = None


class ReassignRequest(CamelModel):
    new_table_id: int
    seat_numbers: list[int] | None = None
    actor: str | None = None


class FinalizeRequest(CamelModel):
    actor: str | None = None


class AdminLogResponse(CamelModel):
    id: str
    action: str
    entity_type: str
    entity_id: str | None
    actor: str | None
    details: dict[str, Any]
    created_at: datetime | None


class OutboxEventResponse(CamelModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: datetime | None
    published_at: datetime | None = None
