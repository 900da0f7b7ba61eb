# src/domain/validation.py
"""
Pure booking rules. No I/O; callers pass in everything they need,
including the current time.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable


DEFAULT_HOLD_TIMEOUT = timedelta(minutes=20)
DEFAULT_TICKET_CUTOFF_DAYS = 3

WINE_SELECTION_TYPES = frozenset({"wine_glass", "wine_bottle"})


class EventType(str, Enum):
    TABLE = "table"
    TICKET_ONLY = "ticket-only"


PARTY_SIZE_BOUNDS: dict[EventType, tuple[int, int]] = {
    EventType.TICKET_ONLY: (1, 6),
    EventType.TABLE: (1, 8),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_booking_hold_expired(
    hold_start_time: datetime | None,
    now: datetime | None = None,
    timeout: timedelta = DEFAULT_HOLD_TIMEOUT,
) -> bool:
    """A hold is expired once strictly more than `timeout` has elapsed."""
    if hold_start_time is None:
        return False
    current = as_utc(now or utc_now())
    return current - as_utc(hold_start_time) > timeout


def hold_expires_at(
    hold_start_time: datetime,
    timeout: timedelta = DEFAULT_HOLD_TIMEOUT,
) -> datetime:
    return as_utc(hold_start_time) + timeout


def is_within_ticket_cutoff(
    event_date: datetime,
    cutoff_days: int = DEFAULT_TICKET_CUTOFF_DAYS,
    now: datetime | None = None,
) -> bool:
    """
    True while tickets can still be bought, i.e. up to and including
    `event_date - cutoff_days`.
    """
    current = as_utc(now or utc_now())
    cutoff_time = as_utc(event_date) - timedelta(days=cutoff_days)
    return current <= cutoff_time


def validate_event_access(
    event_id: int,
    is_private: bool,
    user_has_access: bool = False,
) -> bool:
    if not is_private:
        return True
    return user_has_access


def validate_wine_selections(selections: Any) -> bool:
    """
    Every entry needs a positive integer quantity, a non-empty name and a
    type of wine_glass or wine_bottle. One bad entry rejects the whole list.
    """
    if not isinstance(selections, list):
        return False
    return all(_is_valid_wine_selection(item) for item in selections)


def _is_valid_wine_selection(item: Any) -> bool:
    if not isinstance(item, dict):
        return False

    quantity = item.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        return False

    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        return False

    return item.get("type") in WINE_SELECTION_TYPES


def party_size_bounds(event_type: EventType) -> tuple[int, int]:
    return PARTY_SIZE_BOUNDS[EventType(event_type)]


def validate_party_size(event_type: EventType, party_size: int) -> bool:
    low, high = party_size_bounds(event_type)
    return low <= party_size <= high


def seats_overlap(requested: Iterable[int], taken: Iterable[int]) -> set[int]:
    return set(requested) & set(taken)
