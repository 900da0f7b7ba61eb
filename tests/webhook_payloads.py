"""Signed provider payloads for webhook tests."""

import hashlib
import hmac
import time


WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(body: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{body}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def checkout_completed_event(
    event_id: str,
    session_id: str,
    metadata: dict,
    payment_intent: str | None = None,
    amount_total: int = 5000,
    payment_status: str = "paid",
    email: str = "guest@example.com",
) -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": payment_intent or f"pi_{session_id}",
                "amount_total": amount_total,
                "customer_details": {"email": email},
                "metadata": metadata,
            }
        },
    }


def charge_refunded_event(event_id: str, payment_intent: str, amount: int) -> dict:
    return {
        "id": event_id,
        "type": "charge.refunded",
        "data": {
            "object": {
                "id": f"ch_{payment_intent}",
                "object": "charge",
                "payment_intent": payment_intent,
                "amount": amount,
                "amount_refunded": amount,
                "refunds": {"data": [{"id": f"re_{event_id}", "amount": amount}]},
            }
        },
    }
