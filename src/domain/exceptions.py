

class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking consistency engine.
    """


class InvalidStateTransitionError(BookingEngineError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ValidationError(BookingEngineError):
    """Raised for malformed input. Nothing has been written."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ConflictError(BookingEngineError):
    """Raised when a table or seat is already occupied."""

    def __init__(
        self,
        message: str,
        event_id: int | None = None,
        table_id: int | None = None,
    ):
        self.event_id = event_id
        self.table_id = table_id
        super().__init__(message)


class AuthenticityError(BookingEngineError):
    """Raised when a webhook body fails signature verification."""


class TransientStoreError(BookingEngineError):
    """Raised when the store is unavailable mid-transaction; safe to retry."""


class NotFoundError(BookingEngineError):
    """Raised when a referenced event, table, hold or booking does not exist."""


class PaymentProviderError(BookingEngineError):
    """Raised when the payment provider cannot be reached or is not configured."""
