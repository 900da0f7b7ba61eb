# src/application/webhook_processor.py

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session

from src.application.booking_service import (
    SOURCE_RECOVERY,
    SOURCE_WEBHOOK,
    BookingService,
    PaymentReference,
)
from src.application.broadcaster import AvailabilityBroadcaster, availability_broadcaster
from src.config import Settings, get_settings
from src.domain.exceptions import (
    NotFoundError,
    PaymentProviderError,
    TransientStoreError,
    ValidationError,
)
from src.domain.results import BookingConfirmed, ConfirmationResult
from src.domain.state_machine import BookingStatus
from src.domain.webhook_events import (
    ChargeDisputeCreated,
    CheckoutMetadata,
    CheckoutSession,
    CheckoutSessionCompleted,
    PaymentIntentSucceeded,
    RefundEvent,
    UnhandledEvent,
    WebhookEvent,
    decode_webhook_event,
)
from src.infrastructure.payments.stripe_gateway import StripeGateway
from src.infrastructure.repositories.audit_repository import AdminLogRepository
from src.infrastructure.repositories.webhook_repository import WebhookEventRepository


logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE_PAYMENT = "duplicate-payment"
OUTCOME_CONFLICT = "conflict"
OUTCOME_REJECTED = "rejected"
OUTCOME_IGNORED = "ignored"


class WebhookEventProcessor:
    """
    Turns authenticated payment-provider events into exactly-once booking
    transitions.

    Flow: verify signature, decode, dedupe on the provider event id,
    dispatch, then record the event id as processed in the same
    transaction as the state change. Duplicates short-circuit to an ack.
    """

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        settings: Settings | None = None,
        broadcaster: AvailabilityBroadcaster = availability_broadcaster,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.booking_service = BookingService(db, self.settings, broadcaster)
        self.webhook_repository = WebhookEventRepository(db)
        self.admin_log = AdminLogRepository(db)

    def handle(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        raw = self.gateway.verify_webhook(payload, signature)

        try:
            return self._process(raw)
        except (OperationalError, SQLAlchemyTimeoutError) as exc:
            event_id = raw.get("id") if isinstance(raw, dict) else None
            logger.exception("Store unavailable while processing webhook %s", event_id)
            raise TransientStoreError("Booking store unavailable, retry later") from exc

    def _process(self, raw: dict[str, Any]) -> dict[str, Any]:
        try:
            event = decode_webhook_event(raw)
        except ValidationError as exc:
            if not isinstance(raw, dict):
                raise
            event_id, event_type = raw.get("id"), raw.get("type")
            if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
                raise
            if self.webhook_repository.is_processed(event_id):
                return {"received": True, "duplicate": True}
            self._reject(event_id, event_type, exc)
            return self._finish(event_id, event_type, OUTCOME_REJECTED, None)

        if self.webhook_repository.is_processed(event.id):
            logger.info("Duplicate webhook ignored. event_id=%s type=%s", event.id, event.type)
            return {"received": True, "duplicate": True}

        try:
            outcome, booking_id = self._dispatch(event)
        except (ValidationError, NotFoundError) as exc:
            # Authenticated but unusable: retrying would never succeed.
            self._reject(event.id, event.type, exc)
            outcome, booking_id = OUTCOME_REJECTED, None

        return self._finish(event.id, event.type, outcome, booking_id)

    def _finish(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        booking_id: str | None,
    ) -> dict[str, Any]:
        self.webhook_repository.mark_processed(
            stripe_event_id=event_id,
            event_type=event_type,
            outcome=outcome,
            booking_id=booking_id,
        )
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent delivery of the same event got there first.
            self.db.rollback()
            logger.info("Concurrent duplicate webhook. event_id=%s", event_id)
            return {"received": True, "duplicate": True}

        logger.info(
            "Webhook processed. event_id=%s type=%s outcome=%s booking_id=%s",
            event_id,
            event_type,
            outcome,
            booking_id,
        )
        return {"received": True, "eventId": event_id, "type": event_type}

    def _dispatch(self, event: WebhookEvent | UnhandledEvent) -> tuple[str, str | None]:
        if isinstance(event, CheckoutSessionCompleted):
            return self._handle_checkout_completed(event)
        if isinstance(event, PaymentIntentSucceeded):
            return self._handle_payment_succeeded(event)
        if isinstance(event, UnhandledEvent):
            logger.info("Unhandled webhook type acknowledged. event_id=%s type=%s", event.id, event.type)
            return OUTCOME_IGNORED, None
        return self._handle_release(event)

    def _handle_checkout_completed(self, event: CheckoutSessionCompleted) -> tuple[str, str | None]:
        session = event.payload
        if not session.is_paid:
            logger.info(
                "Checkout session not paid yet. event_id=%s session_id=%s payment_status=%s",
                event.id,
                session.id,
                session.payment_status,
            )
            return OUTCOME_IGNORED, None

        result = self._confirm_session(session, SOURCE_WEBHOOK)
        return self._outcome(result)

    def _handle_payment_succeeded(self, event: PaymentIntentSucceeded) -> tuple[str, str | None]:
        intent = event.payload
        if not intent.metadata.get("eventId"):
            # Checkout-created intents carry no booking metadata; the session event books.
            logger.info("Payment succeeded without booking metadata. payment_id=%s", intent.id)
            return OUTCOME_IGNORED, None

        metadata = CheckoutMetadata.from_provider(intent.metadata)
        result = self.booking_service.confirm_checkout(
            metadata,
            PaymentReference(
                payment_id=intent.id,
                amount=intent.amount_received or intent.amount,
                customer_email=intent.receipt_email,
            ),
            source=SOURCE_WEBHOOK,
        )
        return self._outcome(result)

    def _handle_release(self, event: RefundEvent) -> tuple[str, str | None]:
        to_status = (
            BookingStatus.CANCELED
            if isinstance(event, ChargeDisputeCreated)
            else BookingStatus.REFUNDED
        )
        booking, changed = self.booking_service.release_by_payment_reference(
            event.payment_references(),
            to_status,
            refund_amount=event.refund_amount(),
            reason=f"{event.type} {event.id}",
        )
        if not booking:
            return OUTCOME_IGNORED, None
        return (OUTCOME_PROCESSED if changed else OUTCOME_IGNORED), booking.id

    def replay_checkout_session(self, session_id: str) -> ConfirmationResult:
        """
        Manual recovery for a webhook that never arrived: fetch the session
        from the provider and run it through the webhook's creation path.
        """
        raw = self.gateway.retrieve_checkout_session(session_id)
        try:
            session = CheckoutSession.model_validate(raw)
        except PydanticValidationError as exc:
            raise PaymentProviderError(f"Unexpected checkout session shape for {session_id}") from exc
        if not session.is_paid:
            raise ValidationError(
                f"Checkout session {session_id} is not paid (status: {session.payment_status})",
                field="sessionId",
            )

        result = self._confirm_session(session, SOURCE_RECOVERY)
        if isinstance(result, BookingConfirmed) and result.created:
            self.admin_log.record(
                action="booking_recovered",
                entity_type="booking",
                entity_id=result.booking.id,
                details={"sessionId": session_id},
            )
        return result

    def _confirm_session(self, session: CheckoutSession, source: str) -> ConfirmationResult:
        metadata = CheckoutMetadata.from_provider(session.metadata)
        return self.booking_service.confirm_checkout(
            metadata,
            PaymentReference(
                session_id=session.id,
                payment_id=session.payment_intent,
                amount=session.amount_total,
                customer_email=session.email,
            ),
            source=source,
        )

    def _outcome(self, result: ConfirmationResult) -> tuple[str, str | None]:
        if isinstance(result, BookingConfirmed):
            outcome = OUTCOME_PROCESSED if result.created else OUTCOME_DUPLICATE_PAYMENT
            return outcome, result.booking.id
        return OUTCOME_CONFLICT, None

    def _reject(self, event_id: str, event_type: str, exc: Exception) -> None:
        logger.warning(
            "Webhook rejected. event_id=%s type=%s reason=%s",
            event_id,
            event_type,
            exc,
        )
        self.admin_log.record(
            action="webhook_rejected",
            entity_type="webhook_event",
            entity_id=event_id,
            details={
                "type": event_type,
                "reason": str(exc),
                "field": getattr(exc, "field", None),
            },
        )
