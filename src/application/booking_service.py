# src/application/booking_service.py

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.application.availability_sync import AvailabilitySynchronizer
from src.application.booking_validator import BookingValidator
from src.application.broadcaster import AvailabilityBroadcaster, availability_broadcaster
from src.application.hold_manager import HoldManager
from src.config import Settings, get_settings
from src.domain import validation
from src.domain.exceptions import ConflictError, NotFoundError, ValidationError
from src.domain.results import BookingConfirmed, BookingConflict, ConfirmationResult
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.domain.validation import EventType
from src.domain.webhook_events import CheckoutMetadata
from src.infrastructure.db.models import Booking, Event, VenueTable
from src.infrastructure.repositories.audit_repository import AdminLogRepository, OutboxRepository
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository


logger = logging.getLogger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_RECOVERY = "recovery"
SOURCE_API = "api"

BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
BOOKING_REFUNDED = "BOOKING_REFUNDED"
BOOKING_CANCELED = "BOOKING_CANCELED"

_RELEASE_EVENT_TYPES = {
    BookingStatus.REFUNDED: BOOKING_REFUNDED,
    BookingStatus.CANCELED: BOOKING_CANCELED,
}


@dataclass(frozen=True)
class PaymentReference:
    """What the payment provider tells us about a captured payment."""

    session_id: str | None = None
    payment_id: str | None = None
    amount: int | None = None
    customer_email: str | None = None


class BookingService:
    """
    Application service coordinating the booking lifecycle.

    Every creation path (webhook, manual recovery, direct API) goes through
    confirm_checkout. Methods flush but never commit; the caller owns the
    transaction.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        broadcaster: AvailabilityBroadcaster = availability_broadcaster,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.booking_repository = BookingRepository(db)
        self.event_repository = EventRepository(db)
        self.admin_log = AdminLogRepository(db)
        self.outbox = OutboxRepository(db)
        self.validator = BookingValidator(db, self.settings)
        self.hold_manager = HoldManager(db, self.settings)
        self.synchronizer = AvailabilitySynchronizer(db, broadcaster)

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def confirm_checkout(
        self,
        metadata: CheckoutMetadata,
        payment: PaymentReference,
        source: str = SOURCE_WEBHOOK,
        access_code: str | None = None,
        enforce_cutoff: bool = False,
        enforce_access: bool = False,
        now: datetime | None = None,
    ) -> ConfirmationResult:
        """
        Turn a paid checkout into a confirmed booking.

        Idempotent by payment reference: a second call for the same
        session or payment intent returns the existing booking. Losing the
        table to another confirmed booking returns BookingConflict; nothing
        is inserted in that case.
        """
        existing = self._existing_for_payment(payment)
        if existing:
            return existing

        current = now or validation.utc_now()
        customer_email = payment.customer_email or metadata.customer_email
        if not customer_email:
            raise ValidationError("A customer email is required", field="customerEmail")

        event = self.event_repository.lock_event(metadata.event_id)
        # A concurrent delivery for the same payment may have committed while we waited.
        existing = self._existing_for_payment(payment)
        if existing:
            return existing

        party_size = metadata.party_size
        table = self.validator.check_booking_request(
            event,
            metadata.table_id,
            party_size,
            wine_selections=metadata.wine_selections,
            access_code=access_code,
            now=current,
            enforce_cutoff=enforce_cutoff,
            enforce_access=enforce_access,
        )

        conflict = self._check_inventory(event, metadata.table_id, party_size, payment)
        if conflict:
            self._record_conflict(conflict, source)
            return conflict

        booking = Booking(
            event_id=event.id,
            table_id=metadata.table_id,
            seat_numbers=list(metadata.seat_numbers),
            party_size=party_size,
            customer_email=customer_email,
            status=BookingStatus.CONFIRMED,
            source=source,
            stripe_session_id=payment.session_id,
            stripe_payment_id=payment.payment_id,
            amount=payment.amount or 0,
            food_selections=list(metadata.food_selections),
            wine_selections=list(metadata.wine_selections),
            guest_names=metadata.guest_names,
            selected_venue=metadata.selected_venue,
        )
        BookingStateMachine.validate_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)

        try:
            with self.db.begin_nested():
                self.booking_repository.add(booking)
                self.db.flush()
        except IntegrityError:
            # Another transaction committed first: same payment, or same table.
            return self._resolve_insert_race(metadata, payment, source)

        self.hold_manager.complete_holds(
            event.id,
            metadata.table_id,
            hold_id=metadata.hold_id,
            customer_refs=[customer_email, metadata.user_id],
            now=current,
        )
        self.synchronizer.sync_event_availability(event.id)
        self._add_outbox(booking, BOOKING_CONFIRMED, self._booking_payload(booking, event, table))

        if source == SOURCE_API:
            self.admin_log.record(
                action="manual_booking",
                entity_type="booking",
                entity_id=booking.id,
                details={"eventId": event.id, "tableId": booking.table_id},
            )

        logger.info(
            "Booking confirmed. booking_id=%s event_id=%s table_id=%s party_size=%s source=%s",
            booking.id,
            event.id,
            booking.table_id,
            party_size,
            source,
        )
        return BookingConfirmed(booking=booking, created=True)

    def create_direct_booking(
        self,
        event_id: int,
        table_id: int | None,
        seat_numbers: list[int],
        customer_email: str,
        party_size: int | None = None,
        food_selections: list[Any] | None = None,
        wine_selections: list[Any] | None = None,
        guest_names: Any = None,
        selected_venue: str | None = None,
        hold_id: str | None = None,
        access_code: str | None = None,
        now: datetime | None = None,
    ) -> ConfirmationResult:
        if party_size is not None and seat_numbers and party_size != len(seat_numbers):
            raise ValidationError(
                f"Party size {party_size} does not match {len(seat_numbers)} selected seats",
                field="partySize",
            )
        metadata = CheckoutMetadata(
            event_id=event_id,
            table_id=table_id,
            seat_numbers=seat_numbers,
            quantity=party_size,
            customer_email=customer_email,
            hold_id=hold_id,
            selected_venue=selected_venue,
            food_selections=food_selections or [],
            wine_selections=wine_selections if wine_selections is not None else [],
            guest_names=guest_names if guest_names is not None else [],
        )
        return self.confirm_checkout(
            metadata,
            PaymentReference(customer_email=customer_email),
            source=SOURCE_API,
            access_code=access_code,
            enforce_cutoff=True,
            enforce_access=True,
            now=now,
        )

    # ------------------------------------------------------------------
    # Release: refunds, disputes, admin cancellation
    # ------------------------------------------------------------------

    def release_by_payment_reference(
        self,
        references: list[str],
        to_status: BookingStatus,
        refund_amount: int | None = None,
        reason: str | None = None,
    ) -> tuple[Booking | None, bool]:
        """
        Returns (booking, changed). A booking already in a terminal state
        comes back unchanged; an unknown payment gives (None, False).
        """
        booking = self.booking_repository.find_for_payment_references(references)
        if not booking:
            logger.warning("No booking found for payment references %s", references)
            return None, False

        changed = self._release(booking.id, to_status, refund_amount, reason)
        return self.booking_repository.get_by_id(booking.id), changed

    def refund_booking(
        self,
        booking_id: str,
        refund_amount: int | None = None,
        actor: str | None = None,
        reason: str | None = None,
    ) -> Booking:
        booking = self.get_booking(booking_id)
        amount = refund_amount if refund_amount is not None else booking.amount
        if self._release(booking_id, BookingStatus.REFUNDED, amount, reason):
            self.admin_log.record(
                action="booking_refunded",
                entity_type="booking",
                entity_id=booking_id,
                actor=actor,
                details={"refundAmount": amount, "reason": reason},
            )
        return self.get_booking(booking_id)

    def cancel_booking(
        self,
        booking_id: str,
        actor: str | None = None,
        reason: str | None = None,
    ) -> Booking:
        self.get_booking(booking_id)
        if self._release(booking_id, BookingStatus.CANCELED, None, reason):
            self.admin_log.record(
                action="booking_canceled",
                entity_type="booking",
                entity_id=booking_id,
                actor=actor,
                details={"reason": reason},
            )
        return self.get_booking(booking_id)

    def _release(
        self,
        booking_id: str,
        to_status: BookingStatus,
        refund_amount: int | None,
        reason: str | None,
    ) -> bool:
        booking = self.get_booking(booking_id)
        # Event first, then booking: same lock order as confirm_checkout.
        event = self.event_repository.lock_event(booking.event_id)
        booking = self.booking_repository.lock_by_id(booking_id)

        current_status = BookingStatus(booking.status)
        if not BookingStateMachine.should_release(current_status, to_status):
            logger.info(
                "Booking %s already %s, ignoring %s",
                booking.id,
                current_status.value,
                to_status.value,
            )
            return False

        self.booking_repository.update_status(booking, to_status)
        if refund_amount is not None:
            booking.refund_amount = refund_amount
        if reason:
            booking.notes = reason

        self.synchronizer.sync_event_availability(event.id)

        table = self.event_repository.get_table(booking.table_id) if booking.table_id else None
        payload = self._booking_payload(booking, event, table)
        payload["refund_amount"] = booking.refund_amount
        payload["reason"] = reason
        self._add_outbox(booking, _RELEASE_EVENT_TYPES[to_status], payload)

        logger.info(
            "Booking released. booking_id=%s event_id=%s from=%s to=%s party_size=%s",
            booking.id,
            event.id,
            current_status.value,
            to_status.value,
            booking.party_size,
        )
        return True

    # ------------------------------------------------------------------
    # Modification
    # ------------------------------------------------------------------

    def reassign_table(
        self,
        booking_id: str,
        new_table_id: int,
        seat_numbers: list[int] | None = None,
        actor: str | None = None,
    ) -> Booking:
        booking = self.get_booking(booking_id)
        event = self.event_repository.lock_event(booking.event_id)
        booking = self.booking_repository.lock_by_id(booking_id)

        current_status = BookingStatus(booking.status)
        if current_status != BookingStatus.MODIFIED:
            BookingStateMachine.validate_transition(current_status, BookingStatus.MODIFIED)

        if EventType(event.event_type) == EventType.TICKET_ONLY:
            raise ValidationError("Ticket-only bookings have no table to reassign", field="tableId")

        table = self.event_repository.get_table(new_table_id)
        if not table or table.venue_id != event.venue_id:
            raise ValidationError(
                f"Table {new_table_id} does not belong to event {event.id}",
                field="tableId",
            )

        if not self.validator.validate_table_reassignment(
            new_table_id,
            event.id,
            exclude_booking_id=booking.id,
        ):
            raise ConflictError(
                f"Table {new_table_id} is already booked",
                event_id=event.id,
                table_id=new_table_id,
            )

        previous_table_id = booking.table_id
        try:
            with self.db.begin_nested():
                booking.table_id = new_table_id
                if seat_numbers is not None:
                    booking.seat_numbers = list(seat_numbers)
                self.booking_repository.update_status(booking, BookingStatus.MODIFIED)
                self.db.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Table {new_table_id} is already booked",
                event_id=event.id,
                table_id=new_table_id,
            ) from exc

        self.synchronizer.sync_event_availability(event.id)
        self.admin_log.record(
            action="booking_reassigned",
            entity_type="booking",
            entity_id=booking.id,
            actor=actor,
            details={
                "eventId": event.id,
                "fromTableId": previous_table_id,
                "toTableId": new_table_id,
                "toTableLabel": table.table_label,
            },
        )
        logger.info(
            "Booking reassigned. booking_id=%s from_table=%s to_table=%s",
            booking.id,
            previous_table_id,
            new_table_id,
        )
        return booking

    def finalize_modification(self, booking_id: str, actor: str | None = None) -> Booking:
        booking = self.get_booking(booking_id)
        event = self.event_repository.lock_event(booking.event_id)
        booking = self.booking_repository.lock_by_id(booking_id)

        BookingStateMachine.validate_transition(
            BookingStatus(booking.status),
            BookingStatus.CONFIRMED,
        )

        # Entering CONFIRMED re-checks the table at the moment of transition.
        if booking.table_id is not None and not self.validator.validate_table_availability(
            booking.table_id,
            event.id,
            exclude_booking_id=booking.id,
        ):
            raise ConflictError(
                f"Table {booking.table_id} is already booked",
                event_id=event.id,
                table_id=booking.table_id,
            )

        self.booking_repository.update_status(booking, BookingStatus.CONFIRMED)
        self.db.flush()
        self.synchronizer.sync_event_availability(event.id)
        self.admin_log.record(
            action="booking_modification_finalized",
            entity_type="booking",
            entity_id=booking.id,
            actor=actor,
            details={"eventId": event.id, "tableId": booking.table_id},
        )
        return booking

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _existing_for_payment(self, payment: PaymentReference) -> BookingConfirmed | None:
        existing = self.booking_repository.get_by_payment_reference(
            payment.session_id,
            payment.payment_id,
        )
        if not existing:
            return None
        logger.info(
            "Booking already exists for payment. booking_id=%s session_id=%s payment_id=%s",
            existing.id,
            payment.session_id,
            payment.payment_id,
        )
        return BookingConfirmed(booking=existing, created=False)

    def _check_inventory(
        self,
        event: Event,
        table_id: int | None,
        party_size: int,
        payment: PaymentReference,
    ) -> BookingConflict | None:
        # Holds are advisory; only confirmed/modified bookings block a paid checkout.
        if table_id is not None:
            occupant = self.booking_repository.find_active_for_table(event.id, table_id)
            if occupant is None:
                return None
            return BookingConflict(
                event_id=event.id,
                table_id=table_id,
                reason=f"Table {table_id} is already booked",
                stripe_session_id=payment.session_id,
                stripe_payment_id=payment.payment_id,
                existing_booking_id=occupant.id,
            )

        if self.validator.has_ticket_capacity(event, party_size, include_holds=False):
            return None
        return BookingConflict(
            event_id=event.id,
            table_id=None,
            reason="Not enough tickets left for this event",
            stripe_session_id=payment.session_id,
            stripe_payment_id=payment.payment_id,
        )

    def _resolve_insert_race(
        self,
        metadata: CheckoutMetadata,
        payment: PaymentReference,
        source: str,
    ) -> ConfirmationResult:
        existing = self.booking_repository.get_by_payment_reference(
            payment.session_id,
            payment.payment_id,
        )
        if existing:
            return BookingConfirmed(booking=existing, created=False)

        occupant = None
        reason = "Tickets were sold concurrently"
        if metadata.table_id is not None:
            occupant = self.booking_repository.find_active_for_table(
                metadata.event_id,
                metadata.table_id,
            )
            reason = f"Table {metadata.table_id} was booked concurrently"
        conflict = BookingConflict(
            event_id=metadata.event_id,
            table_id=metadata.table_id,
            reason=reason,
            stripe_session_id=payment.session_id,
            stripe_payment_id=payment.payment_id,
            existing_booking_id=occupant.id if occupant else None,
        )
        self._record_conflict(conflict, source)
        return conflict

    def _record_conflict(self, conflict: BookingConflict, source: str) -> None:
        logger.warning(
            "Booking conflict, manual reconciliation needed. event_id=%s table_id=%s "
            "session_id=%s payment_id=%s reason=%s",
            conflict.event_id,
            conflict.table_id,
            conflict.stripe_session_id,
            conflict.stripe_payment_id,
            conflict.reason,
        )
        # A direct API request is rejected with 409 and rolled back; nothing to reconcile.
        if source == SOURCE_API:
            return
        details = conflict.as_log_details()
        details["source"] = source
        self.admin_log.record(
            action="booking_conflict",
            entity_type="event",
            entity_id=conflict.event_id,
            details=details,
        )

    def _booking_payload(
        self,
        booking: Booking,
        event: Event,
        table: VenueTable | None,
    ) -> dict[str, Any]:
        return {
            "booking_id": booking.id,
            "event_id": event.id,
            "event_title": event.title,
            "table_id": booking.table_id,
            "table_label": table.table_label if table else None,
            "seat_numbers": list(booking.seat_numbers or []),
            "party_size": booking.party_size,
            "customer_email": booking.customer_email,
            "amount": booking.amount,
            "status": BookingStatus(booking.status).value,
        }

    def _add_outbox(self, booking: Booking, event_type: str, payload: dict[str, Any]) -> None:
        self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            payload=payload,
            dedupe_key=f"booking:{booking.id}:{event_type}",
        )
