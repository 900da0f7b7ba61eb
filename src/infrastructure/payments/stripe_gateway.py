# src/infrastructure/payments/stripe_gateway.py

import json
import logging
from typing import Any

import stripe

from src.config import Settings
from src.domain.exceptions import AuthenticityError, PaymentProviderError, ValidationError


logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK: webhook authentication and the
    checkout-session lookup used by manual recovery.
    """

    def __init__(
        self,
        secret_key: str | None,
        webhook_secret: str | None,
        tolerance_seconds: int = 300,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self.webhook_secret:
            raise PaymentProviderError(
                "Stripe webhook secret not configured. Set STRIPE_WEBHOOK_SECRET."
            )
        if not signature:
            raise AuthenticityError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticityError("Webhook body is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise AuthenticityError(f"Webhook signature verification failed: {exc}") from exc

        try:
            return json.loads(body)
        except ValueError as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        if not self.secret_key:
            raise PaymentProviderError(
                "Stripe secret key not configured. Set STRIPE_SECRET_KEY."
            )
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as exc:
            raise ValidationError(f"Unknown checkout session {session_id}", field="sessionId") from exc
        except stripe.StripeError as exc:
            logger.exception("Stripe session lookup failed. session_id=%s", session_id)
            raise PaymentProviderError(f"Stripe session lookup failed: {exc}") from exc

        # StripeObject renders as JSON; go through it to get plain dicts.
        return json.loads(str(session))
