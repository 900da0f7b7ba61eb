# src/domain/webhook_events.py
"""
Payment-provider lifecycle events, decoded once at the boundary into a
closed set of typed variants.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.domain.exceptions import ValidationError
from src.domain.validation import EventType


CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
CHARGE_REFUNDED = "charge.refunded"
PAYMENT_INTENT_REFUNDED = "payment_intent.refunded"
CHARGE_DISPUTE_CREATED = "charge.dispute.created"

SUPPORTED_EVENT_TYPES = frozenset(
    {
        CHECKOUT_SESSION_COMPLETED,
        PAYMENT_INTENT_SUCCEEDED,
        CHARGE_REFUNDED,
        PAYMENT_INTENT_REFUNDED,
        CHARGE_DISPUTE_CREATED,
    }
)


class _ProviderObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CustomerDetails(_ProviderObject):
    email: str | None = None


class CheckoutSession(_ProviderObject):
    id: str
    payment_status: str | None = None
    payment_intent: str | None = None
    amount_total: int | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def email(self) -> str | None:
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email or self.metadata.get("customerEmail")


class PaymentIntent(_ProviderObject):
    id: str
    status: str | None = None
    amount: int | None = None
    amount_received: int | None = None
    amount_refunded: int | None = None
    receipt_email: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class Refund(_ProviderObject):
    id: str | None = None
    amount: int = 0


class RefundList(_ProviderObject):
    data: list[Refund] = Field(default_factory=list)


class Charge(_ProviderObject):
    id: str
    payment_intent: str | None = None
    amount: int | None = None
    amount_refunded: int | None = None
    refunds: RefundList | None = None


class Dispute(_ProviderObject):
    id: str
    charge: str | None = None
    payment_intent: str | None = None
    amount: int | None = None
    amount_refunded: int | None = None
    reason: str | None = None


class CheckoutSessionCompleted(BaseModel):
    id: str
    type: Literal["checkout.session.completed"]
    payload: CheckoutSession


class PaymentIntentSucceeded(BaseModel):
    id: str
    type: Literal["payment_intent.succeeded"]
    payload: PaymentIntent


class ChargeRefunded(BaseModel):
    id: str
    type: Literal["charge.refunded"]
    payload: Charge

    def payment_references(self) -> list[str]:
        return [ref for ref in (self.payload.payment_intent, self.payload.id) if ref]

    def refund_amount(self) -> int:
        # Latest refund only; Stripe lists refunds newest first.
        refunds = self.payload.refunds.data if self.payload.refunds else []
        if refunds:
            return refunds[0].amount
        return self.payload.amount_refunded or self.payload.amount or 0


class PaymentIntentRefunded(BaseModel):
    id: str
    type: Literal["payment_intent.refunded"]
    payload: PaymentIntent

    def payment_references(self) -> list[str]:
        return [self.payload.id]

    def refund_amount(self) -> int:
        return (
            self.payload.amount_received
            or self.payload.amount_refunded
            or self.payload.amount
            or 0
        )


class ChargeDisputeCreated(BaseModel):
    id: str
    type: Literal["charge.dispute.created"]
    payload: Dispute

    def payment_references(self) -> list[str]:
        return [
            ref
            for ref in (self.payload.payment_intent, self.payload.charge, self.payload.id)
            if ref
        ]

    def refund_amount(self) -> int:
        return self.payload.amount_refunded or self.payload.amount or 0


class UnhandledEvent(BaseModel):
    """Any authenticated event outside the closed set; acknowledged and ignored."""

    id: str
    type: str


WebhookEvent = Annotated[
    Union[
        CheckoutSessionCompleted,
        PaymentIntentSucceeded,
        ChargeRefunded,
        PaymentIntentRefunded,
        ChargeDisputeCreated,
    ],
    Field(discriminator="type"),
]

RefundEvent = Union[ChargeRefunded, PaymentIntentRefunded, ChargeDisputeCreated]

_webhook_event_adapter: TypeAdapter = TypeAdapter(WebhookEvent)


def decode_webhook_event(raw: Any) -> WebhookEvent | UnhandledEvent:
    if not isinstance(raw, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    event_id = raw.get("id")
    event_type = raw.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise ValidationError("Webhook payload is missing an event id", field="id")
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Webhook payload is missing an event type", field="type")

    if event_type not in SUPPORTED_EVENT_TYPES:
        return UnhandledEvent(id=event_id, type=event_type)

    data = raw.get("data") or {}
    try:
        return _webhook_event_adapter.validate_python(
            {"id": event_id, "type": event_type, "payload": data.get("object")}
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Malformed {event_type} payload: {exc.error_count()} error(s)",
            field="data.object",
        ) from exc


class CheckoutMetadata(BaseModel):
    """
    Booking details carried in the checkout session metadata.

    Stripe metadata values are always strings; list fields arrive as
    JSON text and seats as a comma separated list.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: int = Field(alias="eventId")
    table_id: int | None = Field(default=None, alias="tableId")
    seat_numbers: list[int] = Field(default_factory=list, alias="seats")
    quantity: int | None = None
    event_type: EventType | None = Field(default=None, alias="eventType")
    customer_email: str | None = Field(default=None, alias="customerEmail")
    user_id: str | None = Field(default=None, alias="userId")
    hold_id: str | None = Field(default=None, alias="holdId")
    selected_venue: str | None = Field(default=None, alias="selectedVenue")
    food_selections: list[Any] = Field(default_factory=list, alias="foodSelections")
    wine_selections: list[Any] = Field(default_factory=list, alias="wineSelections")
    guest_names: list[Any] | dict[str, Any] = Field(default_factory=list, alias="guestNames")

    @field_validator("table_id", "quantity", "selected_venue", "hold_id", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("seat_numbers", mode="before")
    @classmethod
    def _split_seats(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("food_selections", "wine_selections", "guest_names", mode="before")
    @classmethod
    def _decode_json(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return []
            return json.loads(value)
        return value

    @property
    def party_size(self) -> int:
        if self.seat_numbers:
            return len(self.seat_numbers)
        return self.quantity or 1

    @classmethod
    def from_provider(cls, metadata: dict[str, str]) -> "CheckoutMetadata":
        if not metadata or not metadata.get("eventId"):
            raise ValidationError("Missing required booking metadata", field="metadata")
        try:
            return cls.model_validate(metadata)
        except (PydanticValidationError, ValueError) as exc:
            raise ValidationError(
                f"Invalid booking metadata: {exc}",
                field="metadata",
            ) from exc
