import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session

from src.application.notifications import LoggingNotifier, NotificationDispatcher
from src.config import Settings, get_settings
from src.domain.exceptions import (
    AuthenticityError,
    BookingEngineError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentProviderError,
    TransientStoreError,
    ValidationError,
)
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.payments.stripe_gateway import StripeGateway


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[BookingEngineError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthenticityError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PaymentProviderError, status.HTTP_502_BAD_GATEWAY),
]


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_payment_gateway(settings: Settings = Depends(get_app_settings)) -> StripeGateway:
    return StripeGateway.from_settings(settings)


def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(notifier=LoggingNotifier())


def is_db_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


def http_error(exc: BookingEngineError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    detail: dict = {"error": type(exc).__name__, "message": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        detail["field"] = field
    if isinstance(exc, ConflictError):
        detail["eventId"] = exc.event_id
        detail["tableId"] = exc.table_id
    return HTTPException(status_code=status_code, detail=detail)


def commit(db: Session) -> None:
    """Commit now so background tasks and clients see the result."""
    try:
        db.commit()
    except Exception as exc:
        db.rollback()
        if is_db_degraded(exc):
            logger.exception("Commit failed, store degraded")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Booking store unavailable. Please retry.",
            ) from exc
        raise
