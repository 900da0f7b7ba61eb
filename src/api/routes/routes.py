import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.api.routes.dependencies import (
    commit,
    get_app_settings,
    get_db,
    get_notification_dispatcher,
    http_error,
)
from src.api.schemas.schemas import (
    AvailabilityResponse,
    BookingCreateRequest,
    BookingResponse,
    ConflictResponse,
    HoldReleaseResponse,
    SeatHoldRequest,
    SeatHoldResponse,
)
from src.application.availability_sync import AvailabilitySynchronizer
from src.application.booking_service import BookingService
from src.application.broadcaster import EventAvailability
from src.application.hold_manager import HoldManager
from src.application.notifications import NotificationDispatcher
from src.config import Settings
from src.domain.exceptions import BookingEngineError
from src.domain.results import BookingConflict, HoldConflict
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking


router = APIRouter()
logger = logging.getLogger(__name__)


def booking_to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        event_id=booking.event_id,
        table_id=booking.table_id,
        seat_numbers=list(booking.seat_numbers or []),
        party_size=booking.party_size,
        customer_email=booking.customer_email,
        status=BookingStatus(booking.status).value,
        source=booking.source,
        stripe_session_id=booking.stripe_session_id,
        stripe_payment_id=booking.stripe_payment_id,
        amount=booking.amount,
        refund_amount=booking.refund_amount,
        food_selections=list(booking.food_selections or []),
        wine_selections=list(booking.wine_selections or []),
        guest_names=booking.guest_names,
        selected_venue=booking.selected_venue,
        notes=booking.notes,
        created_at=booking.created_at,
        last_modified=booking.last_modified,
    )


def availability_to_response(availability: EventAvailability) -> AvailabilityResponse:
    return AvailabilityResponse(**availability.as_dict())


def conflict_exception(conflict: BookingConflict | HoldConflict) -> HTTPException:
    body = ConflictResponse(
        event_id=conflict.event_id,
        table_id=conflict.table_id,
        reason=conflict.reason,
        conflicting_seats=getattr(conflict, "conflicting_seats", []),
    )
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=body.model_dump(by_alias=True),
    )


@router.get("/health")
def health():
    return {"message": "Booking Consistency Engine is running"}


@router.post(
    "/api/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    request: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    service = BookingService(db, settings)
    try:
        result = service.create_direct_booking(
            event_id=request.event_id,
            table_id=request.table_id,
            seat_numbers=request.seat_numbers,
            customer_email=request.customer_email,
            party_size=request.party_size,
            food_selections=request.food_selections,
            wine_selections=request.wine_selections,
            guest_names=request.guest_names,
            selected_venue=request.selected_venue,
            hold_id=request.hold_id,
            access_code=request.access_code,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    if isinstance(result, BookingConflict):
        raise conflict_exception(result)

    commit(db)
    background_tasks.add_task(dispatcher.dispatch_pending)
    return booking_to_response(result.booking)


@router.get("/api/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        booking = BookingService(db, settings).get_booking(booking_id)
    except BookingEngineError as exc:
        raise http_error(exc) from exc
    return booking_to_response(booking)


@router.post(
    "/api/seat-holds",
    response_model=SeatHoldResponse,
    status_code=status.HTTP_201_CREATED,
)
def place_hold(
    request: SeatHoldRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    manager = HoldManager(db, settings)
    try:
        result = manager.place_hold(
            event_id=request.event_id,
            table_id=request.table_id,
            seat_numbers=request.seat_numbers,
            customer_ref=request.customer_ref,
            party_size=request.party_size,
            access_code=request.access_code,
        )
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    if isinstance(result, HoldConflict):
        raise conflict_exception(result)

    return SeatHoldResponse(
        hold_id=result.id,
        event_id=result.event_id,
        table_id=result.table_id,
        seat_numbers=list(result.seat_numbers),
        party_size=result.party_size,
        hold_start_time=result.hold_start_time,
        expires_at=manager.hold_expires_at(result),
    )


@router.delete("/api/seat-holds/{hold_id}", response_model=HoldReleaseResponse)
def release_hold(
    hold_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        released = HoldManager(db, settings).release_hold(hold_id)
    except BookingEngineError as exc:
        raise http_error(exc) from exc
    return HoldReleaseResponse(hold_id=hold_id, released=released)


@router.get("/api/events/{event_id}/availability", response_model=AvailabilityResponse)
def get_event_availability(event_id: int, db: Session = Depends(get_db)):
    try:
        availability = AvailabilitySynchronizer(db).get_event_availability(event_id)
    except BookingEngineError as exc:
        raise http_error(exc) from exc
    return availability_to_response(availability)


@router.post("/api/events/{event_id}/sync-availability", response_model=AvailabilityResponse)
def sync_event_availability(event_id: int, db: Session = Depends(get_db)):
    synchronizer = AvailabilitySynchronizer(db)
    availability = synchronizer.sync_event_availability(event_id)
    if availability is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )
    commit(db)
    return availability_to_response(availability)
