# src/domain/results.py
"""
Expected outcomes of ledger operations. A lost race is returned, not raised.
"""

from dataclasses import dataclass, field
from typing import Any

from src.domain.exceptions import ConflictError


@dataclass(frozen=True)
class HoldConflict:
    event_id: int
    table_id: int | None
    reason: str
    conflicting_seats: list[int] = field(default_factory=list)

    def to_error(self) -> ConflictError:
        return ConflictError(self.reason, event_id=self.event_id, table_id=self.table_id)


@dataclass(frozen=True)
class BookingConflict:
    event_id: int
    table_id: int | None
    reason: str
    stripe_session_id: str | None = None
    stripe_payment_id: str | None = None
    existing_booking_id: str | None = None

    def to_error(self) -> ConflictError:
        return ConflictError(self.reason, event_id=self.event_id, table_id=self.table_id)

    def as_log_details(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "tableId": self.table_id,
            "reason": self.reason,
            "stripeSessionId": self.stripe_session_id,
            "stripePaymentId": self.stripe_payment_id,
            "existingBookingId": self.existing_booking_id,
        }


@dataclass(frozen=True)
class BookingConfirmed:
    booking: Any
    created: bool = True


ConfirmationResult = BookingConfirmed | BookingConflict
