# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    MODIFIED = "modified"
    REFUNDED = "refunded"
    CANCELED = "canceled"


# Statuses that still occupy inventory.
NON_TERMINAL_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.MODIFIED)
RELEASE_STATUSES = (BookingStatus.REFUNDED, BookingStatus.CANCELED)


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.

    PENDING only exists while a hold is open; stored bookings start
    at CONFIRMED.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.MODIFIED,
            BookingStatus.REFUNDED,
            BookingStatus.CANCELED,
        },
        BookingStatus.MODIFIED: {
            BookingStatus.CONFIRMED,
            BookingStatus.REFUNDED,
            BookingStatus.CANCELED,
        },
        BookingStatus.REFUNDED: set(),
        BookingStatus.CANCELED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def should_release(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Guard for refund/cancel signals.

        Returns False (no-op) when the booking is already terminal, True when
        the release applies. Raises for anything that is not a release target
        or that comes from a status that can never be released (PENDING).
        """
        cls._ensure_valid_status(from_status)
        if to_status not in RELEASE_STATUSES:
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )
        if cls.is_terminal(from_status):
            return False
        cls.validate_transition(from_status, to_status)
        return True

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def occupies_inventory(cls, status: BookingStatus) -> bool:
        cls._ensure_valid_status(status)
        return status in NON_TERMINAL_STATUSES

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
