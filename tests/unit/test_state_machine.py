# tests/unit/test_state_machine.py

import pytest

from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.MODIFIED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.MODIFIED,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.REFUNDED,
    )


@pytest.mark.parametrize("source", [BookingStatus.CONFIRMED, BookingStatus.MODIFIED])
@pytest.mark.parametrize("target", [BookingStatus.REFUNDED, BookingStatus.CANCELED])
def test_release_from_non_terminal(source, target):
    assert BookingStateMachine.should_release(source, target) is True


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_skip_confirmation():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.MODIFIED,
        )


@pytest.mark.parametrize("status", [BookingStatus.REFUNDED, BookingStatus.CANCELED])
def test_terminal_states(status):
    assert BookingStateMachine.is_terminal(status)
    assert BookingStateMachine.get_allowed_transitions(status) == set()

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(status, BookingStatus.CONFIRMED)


def test_release_on_terminal_is_noop():
    assert BookingStateMachine.should_release(
        BookingStatus.REFUNDED,
        BookingStatus.REFUNDED,
    ) is False
    assert BookingStateMachine.should_release(
        BookingStatus.CANCELED,
        BookingStatus.REFUNDED,
    ) is False


def test_release_guard_rejects_non_release_targets():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.should_release(BookingStatus.CONFIRMED, BookingStatus.MODIFIED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.should_release(BookingStatus.PENDING, BookingStatus.REFUNDED)


def test_inventory_occupancy():
    assert BookingStateMachine.occupies_inventory(BookingStatus.CONFIRMED)
    assert BookingStateMachine.occupies_inventory(BookingStatus.MODIFIED)
    assert not BookingStateMachine.occupies_inventory(BookingStatus.REFUNDED)
    assert not BookingStateMachine.occupies_inventory(BookingStatus.PENDING)


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "confirmed",  # invalid type
            BookingStatus.REFUNDED,
        )
