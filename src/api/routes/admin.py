import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.api.routes.dependencies import (
    commit,
    get_app_settings,
    get_db,
    get_notification_dispatcher,
    get_payment_gateway,
    http_error,
)
from src.api.routes.routes import availability_to_response, booking_to_response, conflict_exception
from src.api.schemas.schemas import (
    AdminLogResponse,
    BookingResponse,
    CancelRequest,
    FinalizeRequest,
    HoldCleanupResponse,
    OutboxEventResponse,
    ReassignRequest,
    RecoverBookingRequest,
    RecoverBookingResponse,
    RefundRequest,
    SyncAllResponse,
)
from src.application.availability_sync import AvailabilitySynchronizer
from src.application.booking_service import BookingService
from src.application.hold_manager import HoldManager
from src.application.notifications import NotificationDispatcher
from src.application.webhook_processor import WebhookEventProcessor
from src.config import Settings
from src.domain.exceptions import BookingEngineError
from src.domain.results import BookingConflict
from src.infrastructure.db.models import OutboxEvent
from src.infrastructure.payments.stripe_gateway import StripeGateway
from src.infrastructure.repositories.audit_repository import AdminLogRepository, OutboxRepository


router = APIRouter(prefix="/api/admin")
logger = logging.getLogger(__name__)


def _outbox_to_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        last_error=item.last_error,
        created_at=item.created_at,
        published_at=item.published_at,
    )


@router.post("/recover-booking", response_model=RecoverBookingResponse)
def recover_booking(
    request: RecoverBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    gateway: StripeGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    processor = WebhookEventProcessor(db, gateway, settings)
    try:
        result = processor.replay_checkout_session(request.session_id)
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    if isinstance(result, BookingConflict):
        # Keep the conflict entry in the admin log before answering 409.
        commit(db)
        raise conflict_exception(result)

    commit(db)
    background_tasks.add_task(dispatcher.dispatch_pending)
    logger.info(
        "Recovery for session %s: booking_id=%s created=%s",
        request.session_id,
        result.booking.id,
        result.created,
    )
    return RecoverBookingResponse(
        created=result.created,
        booking=booking_to_response(result.booking),
    )


@router.post("/sync-all-availability", response_model=SyncAllResponse)
def sync_all_availability(db: Session = Depends(get_db)):
    report = AvailabilitySynchronizer(db).sync_all_events_availability()
    commit(db)
    return SyncAllResponse(
        synced=len(report),
        events=[availability_to_response(item) for item in report],
    )


@router.post("/bookings/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    request: RefundRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    try:
        booking = BookingService(db, settings).refund_booking(
            booking_id,
            refund_amount=request.refund_amount,
            actor=request.actor,
            reason=request.reason,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    commit(db)
    background_tasks.add_task(dispatcher.dispatch_pending)
    return booking_to_response(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    try:
        booking = BookingService(db, settings).cancel_booking(
            booking_id,
            actor=request.actor,
            reason=request.reason,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    commit(db)
    background_tasks.add_task(dispatcher.dispatch_pending)
    return booking_to_response(booking)


@router.post("/bookings/{booking_id}/reassign", response_model=BookingResponse)
def reassign_table(
    booking_id: str,
    request: ReassignRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        booking = BookingService(db, settings).reassign_table(
            booking_id,
            request.new_table_id,
            seat_numbers=request.seat_numbers,
            actor=request.actor,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    commit(db)
    return booking_to_response(booking)


@router.post("/bookings/{booking_id}/finalize", response_model=BookingResponse)
def finalize_modification(
    booking_id: str,
    request: FinalizeRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        booking = BookingService(db, settings).finalize_modification(
            booking_id,
            actor=request.actor,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    commit(db)
    return booking_to_response(booking)


@router.post("/seat-holds/cleanup", response_model=HoldCleanupResponse)
def cleanup_seat_holds(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    expired = HoldManager(db, settings).sweep_expired_holds()
    commit(db)
    return HoldCleanupResponse(expired=expired)


@router.get("/logs", response_model=list[AdminLogResponse])
def list_admin_logs(
    action: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 500))
    entries = AdminLogRepository(db).list_entries(action=action, limit=safe_limit)
    return [
        AdminLogResponse(
            id=entry.id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            actor=entry.actor,
            details=entry.details or {},
            created_at=entry.created_at,
        )
        for entry in entries
    ]


@router.get("/outbox", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_to_response(item) for item in events]


@router.post("/outbox/{outbox_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    outbox_id: str,
    db: Session = Depends(get_db),
):
    item = OutboxRepository(db).get_by_id(outbox_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    item.status = "PUBLISHED"
    item.published_at = datetime.now(timezone.utc)
    item.attempts += 1
    commit(db)
    return _outbox_to_response(item)
